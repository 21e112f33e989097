"""
Launchpad Pipeline - Connection State Machine.

============================================================
PURPOSE
============================================================
Tracks a price poller's connection health with explicit
transitions.

STATE MACHINE:

    DISCONNECTED ──(success)──► CONNECTED
         │                          │
    (failure, retries left)    (failure, retries left)
         │                          │
         ▼                          ▼
    RECONNECTING ◄──(failure)── RECONNECTING
         │    │
         │    └──(success)──► CONNECTED
         │
    (retries exhausted)
         │
         ▼
    DISCONNECTED

    Any state can transition to DISCONNECTED (stop).

INVARIANTS:
- Consecutive failures are counted; a success resets them
- Exactly max_retry_attempts consecutive failures end in
  DISCONNECTED
- All transitions are logged and kept in bounded history

============================================================
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from .types import ConnectionStatus


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

VALID_TRANSITIONS: Dict[ConnectionStatus, Set[ConnectionStatus]] = {
    ConnectionStatus.DISCONNECTED: {
        ConnectionStatus.CONNECTED,
        ConnectionStatus.RECONNECTING,
    },
    ConnectionStatus.CONNECTED: {
        ConnectionStatus.RECONNECTING,
        ConnectionStatus.DISCONNECTED,
    },
    ConnectionStatus.RECONNECTING: {
        ConnectionStatus.CONNECTED,
        ConnectionStatus.DISCONNECTED,
    },
}


# ============================================================
# STATE TRANSITION EVENT
# ============================================================

@dataclass
class StatusTransitionEvent:
    """Event representing a status transition."""

    pool_address: str
    """Pool whose poller changed status."""

    from_status: ConnectionStatus
    """Previous status."""

    to_status: ConnectionStatus
    """New status."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    """When transition occurred."""

    reason: str = ""
    """Reason for transition."""

    consecutive_failures: int = 0
    """Failure counter after the transition."""

    details: Dict[str, Any] = field(default_factory=dict)
    """Additional details."""


# ============================================================
# CONNECTION STATE MACHINE
# ============================================================

class ConnectionStateMachine:
    """
    State machine for a poller's connection health.

    Same-status transitions are no-ops: they are not recorded
    and do not notify listeners.
    """

    def __init__(
        self,
        pool_address: str,
        max_retry_attempts: int = 3,
        max_history: int = 100,
    ):
        """
        Initialize state machine.

        Args:
            pool_address: Pool being polled
            max_retry_attempts: Consecutive failures before DISCONNECTED
            max_history: Transition events retained
        """
        self._pool_address = pool_address
        self._max_retry_attempts = max_retry_attempts
        self._status = ConnectionStatus.DISCONNECTED
        self._consecutive_failures = 0
        self._history: Deque[StatusTransitionEvent] = deque(maxlen=max_history)
        self._listeners: List[Callable[[StatusTransitionEvent], None]] = []

    @property
    def status(self) -> ConnectionStatus:
        """Get current status."""
        return self._status

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def history(self) -> List[StatusTransitionEvent]:
        """Get transition history, oldest first."""
        return list(self._history)

    @property
    def retries_exhausted(self) -> bool:
        return self._consecutive_failures >= self._max_retry_attempts

    def add_listener(self, listener: Callable[[StatusTransitionEvent], None]) -> None:
        """Add a transition listener."""
        self._listeners.append(listener)

    @staticmethod
    def can_transition(
        from_status: ConnectionStatus,
        to_status: ConnectionStatus,
    ) -> tuple[bool, str]:
        """
        Check if transition is allowed.

        Returns:
            Tuple of (allowed, reason)
        """
        if from_status == to_status:
            return True, "Same status"

        if to_status in VALID_TRANSITIONS.get(from_status, set()):
            return True, "Valid transition"

        return False, f"Invalid transition: {from_status.value} -> {to_status.value}"

    def transition_to(
        self,
        target: ConnectionStatus,
        reason: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[StatusTransitionEvent]:
        """
        Transition to a new status.

        Returns:
            The event, or None for a same-status no-op

        Raises:
            ValueError: If the transition is not allowed
        """
        allowed, validation_reason = self.can_transition(self._status, target)
        if not allowed:
            raise ValueError(
                f"Cannot transition poller for {self._pool_address} from "
                f"{self._status.value} to {target.value}: {validation_reason}"
            )

        if self._status == target:
            return None

        event = StatusTransitionEvent(
            pool_address=self._pool_address,
            from_status=self._status,
            to_status=target,
            reason=reason,
            consecutive_failures=self._consecutive_failures,
            details=details or {},
        )

        self._status = target
        self._history.append(event)

        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Status listener error: {e}")

        logger.info(
            f"Poller {self._pool_address}: "
            f"{event.from_status.value} -> {event.to_status.value} ({reason})"
        )

        return event

    # --------------------------------------------------------
    # CONVENIENCE METHODS
    # --------------------------------------------------------

    def record_success(self) -> None:
        """A fetch succeeded: reset failures and mark CONNECTED."""
        self._consecutive_failures = 0
        self.transition_to(ConnectionStatus.CONNECTED, "Fetch succeeded")

    def record_failure(self, error: Optional[Exception] = None) -> bool:
        """
        A fetch failed.

        Returns:
            True if a retry should be scheduled
        """
        self._consecutive_failures += 1
        details = {"error": str(error)} if error else {}

        if self._consecutive_failures < self._max_retry_attempts:
            self.transition_to(
                ConnectionStatus.RECONNECTING,
                f"Fetch failed ({self._consecutive_failures}/{self._max_retry_attempts})",
                details,
            )
            return True

        self.transition_to(
            ConnectionStatus.DISCONNECTED,
            f"Retries exhausted after {self._consecutive_failures} failures",
            details,
        )
        return False

    def reset_failures(self) -> None:
        """Clear the failure counter (manual refresh)."""
        self._consecutive_failures = 0

    def mark_disconnected(self, reason: str = "Stopped") -> None:
        self.transition_to(ConnectionStatus.DISCONNECTED, reason)
