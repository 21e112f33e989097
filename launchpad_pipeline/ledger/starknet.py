"""
Launchpad Pipeline - Starknet JSON-RPC Ledger.

============================================================
PURPOSE
============================================================
LedgerReader and BalanceSource backed by a Starknet node's
JSON-RPC API over aiohttp.

RPC METHODS USED:
- starknet_call                   (pool views, balance_of)
- starknet_getEvents              (trade logs, paged)
- starknet_getBlockWithTxHashes   (block timestamps)
- starknet_blockNumber            (health check)

FAILURES:
Transport errors, timeouts, HTTP >= 400 and JSON-RPC error
objects all raise NetworkError. Nothing is retried here; the
poller owns the retry policy.

============================================================
"""

import asyncio
import itertools
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp

from ..config import LedgerConfig
from ..errors import NetworkError
from ..logging_utils import mask_url
from ..pricing import u256_from_words
from ..selectors import felt_to_hex, normalize_felt, selector_from_name
from ..types import CurveParameters, CurveState, RawLogEntry
from .base import BalanceSource, LedgerReader


logger = logging.getLogger(__name__)


class StarknetRpcLedger(LedgerReader, BalanceSource):
    """
    Starknet node client.

    One aiohttp session is reused for all calls and closed by
    close() (or the async context manager) when owned.
    """

    def __init__(
        self,
        config: LedgerConfig,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        config.validate()
        self._config = config
        self._session = session
        self._owns_session = session is None
        self._request_ids = itertools.count(1)

        # Block timestamps never change once a block exists
        self._block_times: Dict[int, datetime] = {}
        self._max_block_times = 10000

        self.last_latency_ms: Optional[float] = None

    # --------------------------------------------------------
    # LEDGER INTERFACE
    # --------------------------------------------------------

    async def get_curve_state(self, pool_address: str) -> CurveState:
        result = await self.call(pool_address, self._config.state_entry_point)
        self._require_length(result, 5, self._config.state_entry_point, pool_address)

        return CurveState(
            tokens_sold=u256_from_words(result[0], result[1]),
            max_supply=u256_from_words(result[2], result[3]),
            migrated=normalize_felt(result[4]) != 0,
        )

    async def get_curve_parameters(self, pool_address: str) -> CurveParameters:
        result = await self.call(pool_address, self._config.config_entry_point)
        self._require_length(result, 4, self._config.config_entry_point, pool_address)

        return CurveParameters(
            base_price=u256_from_words(result[0], result[1]),
            slope=u256_from_words(result[2], result[3]),
        )

    async def get_event_logs(
        self,
        pool_address: str,
        from_block: int,
        to_block: Optional[int] = None,
    ) -> List[RawLogEntry]:
        """Fetch all pool events in range, following continuation tokens."""
        entries: List[RawLogEntry] = []
        continuation_token: Optional[str] = None

        while True:
            event_filter: Dict[str, Any] = {
                "address": pool_address,
                "from_block": {"block_number": from_block},
                "to_block": {"block_number": to_block} if to_block is not None else "latest",
                "chunk_size": self._config.events_chunk_size,
            }
            if continuation_token:
                event_filter["continuation_token"] = continuation_token

            page = await self._rpc("starknet_getEvents", {"filter": event_filter}, pool_address)

            for event in page.get("events", []):
                entries.append(RawLogEntry(
                    keys=list(event.get("keys", [])),
                    data=list(event.get("data", [])),
                    transaction_hash=event.get("transaction_hash", ""),
                    block_number=event.get("block_number"),
                    event_index=event.get("event_index"),
                    from_address=event.get("from_address"),
                ))

            continuation_token = page.get("continuation_token")
            if not continuation_token:
                break

        logger.debug(
            f"Fetched {len(entries)} events for {pool_address} "
            f"from block {from_block}"
        )
        return entries

    async def get_block_timestamp(self, block_number: int) -> datetime:
        cached = self._block_times.get(block_number)
        if cached is not None:
            return cached

        block = await self._rpc(
            "starknet_getBlockWithTxHashes",
            {"block_id": {"block_number": block_number}},
        )
        if "timestamp" not in block:
            raise NetworkError(
                f"Block {block_number} response has no timestamp",
                method="starknet_getBlockWithTxHashes",
            )

        timestamp = datetime.fromtimestamp(int(block["timestamp"]), tz=timezone.utc)

        if len(self._block_times) >= self._max_block_times:
            self._block_times.clear()
        self._block_times[block_number] = timestamp

        return timestamp

    async def get_balance(self, token_address: str, owner_address: str) -> int:
        result = await self.call(
            token_address,
            self._config.balance_entry_point,
            [owner_address],
        )
        self._require_length(result, 2, self._config.balance_entry_point, None)
        return u256_from_words(result[0], result[1])

    async def get_block_number(self) -> int:
        """Latest block number (also a cheap health check)."""
        return int(await self._rpc("starknet_blockNumber", {}))

    # --------------------------------------------------------
    # CONTRACT CALLS
    # --------------------------------------------------------

    async def call(
        self,
        contract_address: str,
        entry_point: str,
        calldata: Optional[List[Any]] = None,
    ) -> List[str]:
        """
        Call a view function at the latest block.

        Returns:
            Result felts as hex strings
        """
        request = {
            "contract_address": contract_address,
            "entry_point_selector": felt_to_hex(selector_from_name(entry_point)),
            "calldata": [felt_to_hex(normalize_felt(arg)) for arg in (calldata or [])],
        }
        result = await self._rpc(
            "starknet_call",
            {"request": request, "block_id": "latest"},
            contract_address,
        )
        if not isinstance(result, list):
            raise NetworkError(
                f"Unexpected starknet_call result for {entry_point}",
                pool_address=contract_address,
                method="starknet_call",
            )
        return result

    # --------------------------------------------------------
    # TRANSPORT
    # --------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.timeout_seconds),
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
            )
            self._owns_session = True
        return self._session

    async def _rpc(
        self,
        method: str,
        params: Dict[str, Any],
        pool_address: Optional[str] = None,
    ) -> Any:
        """Make a JSON-RPC request with error mapping."""
        session = await self._get_session()
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }

        start_time = time.time()
        try:
            async with session.post(self._config.rpc_url, json=payload) as response:
                self.last_latency_ms = (time.time() - start_time) * 1000

                if response.status >= 400:
                    body = await response.text()
                    raise NetworkError(
                        f"HTTP {response.status} from ledger",
                        pool_address=pool_address,
                        method=method,
                        status_code=response.status,
                        context={"response_body": body[:500]},
                    )

                data = await response.json(content_type=None)

        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"Ledger call {method} timed out",
                pool_address=pool_address,
                method=method,
                timed_out=True,
                original_error=e,
            )
        except aiohttp.ClientError as e:
            raise NetworkError(
                f"Connection error: {e}",
                pool_address=pool_address,
                method=method,
                original_error=e,
            )

        if not isinstance(data, dict):
            raise NetworkError(
                f"Malformed JSON-RPC response for {method}",
                pool_address=pool_address,
                method=method,
            )

        if data.get("error"):
            error = data["error"]
            raise NetworkError(
                f"RPC error: {error.get('message', error) if isinstance(error, dict) else error}",
                pool_address=pool_address,
                method=method,
                context={"rpc_error": error},
            )

        return data.get("result")

    @staticmethod
    def _require_length(
        result: List[Any],
        expected: int,
        entry_point: str,
        pool_address: Optional[str],
    ) -> None:
        if len(result) < expected:
            raise NetworkError(
                f"{entry_point} returned {len(result)} felts, expected {expected}",
                pool_address=pool_address,
                method="starknet_call",
            )

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def close(self) -> None:
        """Close the HTTP session if owned."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(rpc_url={mask_url(self._config.rpc_url)})>"


class StarknetBalanceSource(BalanceSource):
    """
    Token balances via a token contract's balance_of view.

    Shares the ledger's session; closing is left to the ledger.
    """

    def __init__(self, ledger: StarknetRpcLedger) -> None:
        self._ledger = ledger

    async def get_balance(self, token_address: str, owner_address: str) -> int:
        return await self._ledger.get_balance(token_address, owner_address)
