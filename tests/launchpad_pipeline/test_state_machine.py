"""
Connection State Machine Tests.

============================================================
PURPOSE
============================================================
Tests for poller connection status transitions.

============================================================
"""

import pytest

from launchpad_pipeline.state_machine import VALID_TRANSITIONS, ConnectionStateMachine
from launchpad_pipeline.types import ConnectionStatus


POOL = "0x0123"


class TestConnectionStateMachine:
    """Tests for ConnectionStateMachine."""

    def test_initial_state(self):
        machine = ConnectionStateMachine(POOL)
        assert machine.status == ConnectionStatus.DISCONNECTED
        assert machine.consecutive_failures == 0
        assert machine.history == []

    def test_every_status_has_rules(self):
        assert set(VALID_TRANSITIONS) == set(ConnectionStatus)

    def test_success_connects(self):
        machine = ConnectionStateMachine(POOL)
        machine.record_success()
        assert machine.status == ConnectionStatus.CONNECTED

    def test_retry_bound(self):
        """Test three consecutive failures end in DISCONNECTED."""
        machine = ConnectionStateMachine(POOL, max_retry_attempts=3)
        machine.record_success()

        assert machine.record_failure() is True
        assert machine.status == ConnectionStatus.RECONNECTING
        assert machine.record_failure() is True
        assert machine.status == ConnectionStatus.RECONNECTING
        assert machine.record_failure() is False
        assert machine.status == ConnectionStatus.DISCONNECTED
        assert machine.retries_exhausted

    def test_success_resets_failures(self):
        machine = ConnectionStateMachine(POOL)
        machine.record_failure()
        machine.record_failure()
        machine.record_success()

        assert machine.consecutive_failures == 0
        assert machine.status == ConnectionStatus.CONNECTED

    def test_reset_failures(self):
        machine = ConnectionStateMachine(POOL)
        machine.record_failure()
        machine.reset_failures()
        assert machine.consecutive_failures == 0

    def test_same_status_is_noop(self):
        machine = ConnectionStateMachine(POOL)
        assert machine.transition_to(ConnectionStatus.DISCONNECTED) is None
        assert machine.history == []

    def test_listeners_notified(self):
        events = []
        machine = ConnectionStateMachine(POOL)
        machine.add_listener(events.append)

        machine.record_success()
        machine.record_failure(RuntimeError("boom"))

        assert [(e.from_status, e.to_status) for e in events] == [
            (ConnectionStatus.DISCONNECTED, ConnectionStatus.CONNECTED),
            (ConnectionStatus.CONNECTED, ConnectionStatus.RECONNECTING),
        ]
        assert events[1].details == {"error": "boom"}
        assert events[1].consecutive_failures == 1

    def test_listener_error_does_not_block(self):
        def broken(event):
            raise RuntimeError("listener failure")

        machine = ConnectionStateMachine(POOL)
        machine.add_listener(broken)
        machine.record_success()

        assert machine.status == ConnectionStatus.CONNECTED

    def test_history_bounded(self):
        machine = ConnectionStateMachine(POOL, max_retry_attempts=10, max_history=4)
        for _ in range(5):
            machine.record_success()
            machine.record_failure()

        assert len(machine.history) == 4
        assert machine.history[-1].to_status == ConnectionStatus.RECONNECTING

    def test_can_transition(self):
        allowed, _ = ConnectionStateMachine.can_transition(
            ConnectionStatus.RECONNECTING, ConnectionStatus.CONNECTED,
        )
        assert allowed

    def test_mark_disconnected(self):
        machine = ConnectionStateMachine(POOL)
        machine.record_success()
        machine.mark_disconnected()
        assert machine.status == ConnectionStatus.DISCONNECTED
