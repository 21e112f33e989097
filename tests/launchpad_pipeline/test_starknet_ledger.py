"""
Starknet Ledger Tests.

============================================================
PURPOSE
============================================================
Tests for the JSON-RPC ledger client.

A scripted session stands in for aiohttp; no network access.

============================================================
"""

import asyncio
from datetime import datetime, timezone

import aiohttp
import pytest

from launchpad_pipeline.config import LedgerConfig
from launchpad_pipeline.errors import ConfigurationError, NetworkError
from launchpad_pipeline.ledger import StarknetBalanceSource, StarknetRpcLedger
from launchpad_pipeline.selectors import felt_to_hex, selector_from_name


RPC_URL = "https://node.example:8545/v0_7/secret-key?token=abc"
POOL = "0x0123"


# ============================================================
# SCRIPTED SESSION
# ============================================================

class FakeResponse:
    def __init__(self, status=200, body=None, raise_on_enter=None):
        self.status = status
        self._body = body
        self._raise_on_enter = raise_on_enter

    async def __aenter__(self):
        if self._raise_on_enter is not None:
            raise self._raise_on_enter
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def text(self):
        return str(self._body)

    async def json(self, content_type=None):
        return self._body


class FakeSession:
    """Returns queued responses in order and records payloads."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.payloads = []
        self.closed = False

    def post(self, url, json=None):
        self.payloads.append(json)
        return self.responses.pop(0)

    async def close(self):
        self.closed = True


def rpc_result(result):
    return FakeResponse(body={"jsonrpc": "2.0", "id": 1, "result": result})


def make_ledger(*responses, **config_kwargs):
    session = FakeSession(*responses)
    ledger = StarknetRpcLedger(LedgerConfig(rpc_url=RPC_URL, **config_kwargs), session=session)
    return ledger, session


# ============================================================
# DECODING TESTS
# ============================================================

class TestContractViews:
    """Tests for curve state, parameters and balances."""

    @pytest.mark.asyncio
    async def test_curve_state(self):
        ledger, session = make_ledger(rpc_result(["0x64", "0x0", "0x0", "0x1", "0x1"]))

        state = await ledger.get_curve_state(POOL)

        assert state.tokens_sold == 100
        assert state.max_supply == 1 << 128
        assert state.migrated is True

        payload = session.payloads[0]
        assert payload["method"] == "starknet_call"
        request = payload["params"]["request"]
        assert request["contract_address"] == POOL
        assert request["entry_point_selector"] == felt_to_hex(selector_from_name("get_pool_state"))
        assert request["calldata"] == []

    @pytest.mark.asyncio
    async def test_curve_parameters(self):
        ledger, _ = make_ledger(rpc_result(["0xa", "0x0", "0x2", "0x0"]))

        params = await ledger.get_curve_parameters(POOL)

        assert params.base_price == 10
        assert params.slope == 2

    @pytest.mark.asyncio
    async def test_short_result_rejected(self):
        ledger, _ = make_ledger(rpc_result(["0x1", "0x0"]))

        with pytest.raises(NetworkError):
            await ledger.get_curve_state(POOL)

    @pytest.mark.asyncio
    async def test_balance(self):
        ledger, session = make_ledger(rpc_result(["0x5", "0x0"]))

        balance = await StarknetBalanceSource(ledger).get_balance("0xaaa", "0x111")

        assert balance == 5
        assert session.payloads[0]["params"]["request"]["calldata"] == ["0x111"]

    @pytest.mark.asyncio
    async def test_non_list_call_result(self):
        ledger, _ = make_ledger(rpc_result({"unexpected": True}))

        with pytest.raises(NetworkError):
            await ledger.call(POOL, "get_pool_state")


# ============================================================
# EVENTS AND BLOCKS
# ============================================================

class TestEventsAndBlocks:
    """Tests for event paging and block timestamps."""

    @pytest.mark.asyncio
    async def test_events_follow_continuation_token(self):
        event = {
            "keys": ["0xb0b", "0xabc"],
            "data": ["0x1", "0x0", "0x2", "0x0", "0x0", "0x0"],
            "transaction_hash": "0xfeed",
            "block_number": 7,
            "from_address": POOL,
        }
        ledger, session = make_ledger(
            rpc_result({"events": [event], "continuation_token": "page-2"}),
            rpc_result({"events": [dict(event, transaction_hash="0xbeef")]}),
            events_chunk_size=1,
        )

        entries = await ledger.get_event_logs(POOL, from_block=5)

        assert [e.transaction_hash for e in entries] == ["0xfeed", "0xbeef"]
        assert entries[0].block_number == 7

        first_filter = session.payloads[0]["params"]["filter"]
        assert first_filter["from_block"] == {"block_number": 5}
        assert first_filter["to_block"] == "latest"
        assert first_filter["chunk_size"] == 1
        assert "continuation_token" not in first_filter
        assert session.payloads[1]["params"]["filter"]["continuation_token"] == "page-2"

    @pytest.mark.asyncio
    async def test_block_timestamp_cached(self):
        ledger, session = make_ledger(rpc_result({"block_number": 9, "timestamp": 1700000000}))

        first = await ledger.get_block_timestamp(9)
        second = await ledger.get_block_timestamp(9)

        assert first == second == datetime.fromtimestamp(1700000000, tz=timezone.utc)
        assert len(session.payloads) == 1

    @pytest.mark.asyncio
    async def test_block_without_timestamp(self):
        ledger, _ = make_ledger(rpc_result({"block_number": 9}))

        with pytest.raises(NetworkError):
            await ledger.get_block_timestamp(9)

    @pytest.mark.asyncio
    async def test_block_number(self):
        ledger, _ = make_ledger(rpc_result(12345))
        assert await ledger.get_block_number() == 12345


# ============================================================
# ERROR MAPPING TESTS
# ============================================================

class TestErrorMapping:
    """Tests for transport and RPC failures."""

    @pytest.mark.asyncio
    async def test_http_error(self):
        ledger, _ = make_ledger(FakeResponse(status=503, body="unavailable"))

        with pytest.raises(NetworkError) as exc_info:
            await ledger.get_curve_state(POOL)

        assert exc_info.value.status_code == 503
        assert exc_info.value.is_retryable

    @pytest.mark.asyncio
    async def test_rpc_error_object(self):
        ledger, _ = make_ledger(FakeResponse(body={"error": {"code": 20, "message": "Contract not found"}}))

        with pytest.raises(NetworkError) as exc_info:
            await ledger.get_curve_state(POOL)

        assert "Contract not found" in exc_info.value.message
        assert exc_info.value.pool_address == POOL

    @pytest.mark.asyncio
    async def test_timeout(self):
        ledger, _ = make_ledger(FakeResponse(raise_on_enter=asyncio.TimeoutError()))

        with pytest.raises(NetworkError) as exc_info:
            await ledger.get_curve_state(POOL)

        assert exc_info.value.timed_out

    @pytest.mark.asyncio
    async def test_connection_error(self):
        ledger, _ = make_ledger(FakeResponse(raise_on_enter=aiohttp.ClientConnectionError("refused")))

        with pytest.raises(NetworkError) as exc_info:
            await ledger.get_curve_state(POOL)

        assert isinstance(exc_info.value.original_error, aiohttp.ClientError)


class TestLifecycle:
    """Tests for construction and cleanup."""

    def test_requires_url(self):
        with pytest.raises(ConfigurationError):
            StarknetRpcLedger(LedgerConfig())

    def test_repr_hides_key(self):
        ledger, _ = make_ledger()
        assert repr(ledger) == "<StarknetRpcLedger(rpc_url=https://node.example:8545/***)>"
        assert "secret" not in repr(ledger)

    @pytest.mark.asyncio
    async def test_borrowed_session_not_closed(self):
        ledger, session = make_ledger()
        await ledger.close()
        assert not session.closed
