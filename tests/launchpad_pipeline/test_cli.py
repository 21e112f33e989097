"""
CLI Tests.

============================================================
PURPOSE
============================================================
Tests for the command-line entry point.

The ledger factory is replaced with an in-memory ledger.

============================================================
"""

import json
import logging

import pytest

from launchpad_pipeline import cli
from launchpad_pipeline.ledger import InMemoryLedger
from launchpad_pipeline.types import CurveParameters, CurveState, RawLogEntry


POOL = "0x0123"


@pytest.fixture
def ledger(monkeypatch, tmp_path):
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level

    monkeypatch.setenv("LAUNCHPAD_CACHE_URL", "")
    monkeypatch.setenv("LAUNCHPAD_RPC_URL", "http://localhost:5050/rpc")
    monkeypatch.setenv("LAUNCHPAD_BUY_SELECTOR", "0xb0b")
    monkeypatch.setenv("LAUNCHPAD_SELL_SELECTOR", "0x5e11")
    monkeypatch.chdir(tmp_path)

    ledger = InMemoryLedger()
    ledger.add_pool(POOL, CurveParameters(base_price=100, slope=2), CurveState(tokens_sold=50, max_supply=200))
    monkeypatch.setattr(cli, "create_ledger", lambda config: ledger)

    yield ledger

    root.handlers = handlers
    root.setLevel(level)


def json_output(capsys):
    """The JSON document printed by a command; log lines share stdout."""
    [line] = [l for l in capsys.readouterr().out.splitlines() if l.startswith("{")]
    return json.loads(line)


def make_log(tx: str, block: int, selector: str) -> RawLogEntry:
    return RawLogEntry(
        keys=[selector, "0xabc"],
        data=[hex(10 ** 18), "0x0", hex(3 * 10 ** 18), "0x0", "0x0", "0x0"],
        transaction_hash=tx,
        block_number=block,
        event_index=0,
        from_address=POOL,
    )


class TestPriceCommand:
    """Tests for `price`."""

    def test_json_snapshot(self, ledger, capsys):
        exit_code = cli.main(["--json", "price", POOL])

        assert exit_code == 0
        snapshot = json_output(capsys)
        assert snapshot["price"] == "200"
        assert snapshot["progress"] == 25.0
        assert snapshot["data_state"] == "fresh"

    def test_failure_exit_code(self, ledger, capsys):
        ledger.set_always_fail(True)

        assert cli.main(["--json", "price", POOL]) == 1


class TestTradesCommand:
    """Tests for `trades`."""

    def test_trades_json(self, ledger, capsys):
        ledger.emit(POOL, make_log("0x1", 1, "0xb0b"))
        ledger.emit(POOL, make_log("0x2", 2, "0x5e11"))

        exit_code = cli.main(["--json", "trades", POOL, "--kind", "buy"])

        assert exit_code == 0
        output = json_output(capsys)
        assert [t["tx_hash"] for t in output["trades"]] == ["0x1"]
        assert output["stats"]["buy_count"] == 1
        assert output["stats"]["sell_count"] == 0


class TestConfigurationErrors:
    """Tests for startup validation."""

    def test_missing_rpc_url(self, ledger, monkeypatch, capsys):
        monkeypatch.setenv("LAUNCHPAD_RPC_URL", "")

        assert cli.main(["price", POOL]) == 1
        assert "RPC URL" in capsys.readouterr().err
