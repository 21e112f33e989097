"""
Launchpad Pipeline - In-Memory Ledger.

============================================================
PURPOSE
============================================================
Ledger and balance source held entirely in memory, for tests
and local development.

FEATURES:
- Configurable latency
- Failure injection (next N calls fail, or always fail)
- Call counting per method

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from ..errors import NetworkError
from ..types import CurveParameters, CurveState, RawLogEntry
from .base import BalanceSource, LedgerReader


logger = logging.getLogger(__name__)


@dataclass
class InMemoryLedgerConfig:
    """Configuration for the in-memory ledger."""

    latency_seconds: float = 0.0
    """Simulated latency per call."""

    fail_next: int = 0
    """Number of upcoming calls that raise NetworkError."""

    always_fail: bool = False
    """Every call raises NetworkError."""


@dataclass
class _PoolData:
    params: CurveParameters
    state: CurveState
    logs: List[RawLogEntry] = field(default_factory=list)


class InMemoryLedger(LedgerReader):
    """
    In-memory ledger.

    Pools are registered with add_pool(); trades are appended
    with emit(). Block timestamps default to block_number seconds
    after the epoch unless set explicitly.
    """

    def __init__(self, config: Optional[InMemoryLedgerConfig] = None):
        self._config = config or InMemoryLedgerConfig()
        self._pools: Dict[str, _PoolData] = {}
        self._block_times: Dict[int, datetime] = {}
        self.calls: Dict[str, int] = {}

    # --------------------------------------------------------
    # SETUP
    # --------------------------------------------------------

    def add_pool(
        self,
        pool_address: str,
        params: CurveParameters,
        state: CurveState,
    ) -> None:
        """Register a pool."""
        self._pools[pool_address] = _PoolData(params=params, state=state)

    def set_state(self, pool_address: str, state: CurveState) -> None:
        """Replace a pool's state (e.g. after trades)."""
        self._pools[pool_address].state = state

    def emit(self, pool_address: str, entry: RawLogEntry) -> None:
        """Append a log entry to a pool."""
        self._pools[pool_address].logs.append(entry)

    def set_block_time(self, block_number: int, timestamp: datetime) -> None:
        """Set an explicit block timestamp."""
        self._block_times[block_number] = timestamp

    def fail_next(self, count: int = 1) -> None:
        """Make the next `count` calls fail."""
        self._config.fail_next = count

    def set_always_fail(self, value: bool) -> None:
        """Toggle permanent failure."""
        self._config.always_fail = value

    # --------------------------------------------------------
    # LEDGER INTERFACE
    # --------------------------------------------------------

    async def get_curve_state(self, pool_address: str) -> CurveState:
        await self._before_call("get_curve_state", pool_address)
        return self._pool(pool_address).state

    async def get_curve_parameters(self, pool_address: str) -> CurveParameters:
        await self._before_call("get_curve_parameters", pool_address)
        return self._pool(pool_address).params

    async def get_event_logs(
        self,
        pool_address: str,
        from_block: int,
        to_block: Optional[int] = None,
    ) -> List[RawLogEntry]:
        await self._before_call("get_event_logs", pool_address)
        return [
            entry for entry in self._pool(pool_address).logs
            if (entry.block_number or 0) >= from_block
            and (to_block is None or (entry.block_number or 0) <= to_block)
        ]

    async def get_block_timestamp(self, block_number: int) -> datetime:
        await self._before_call("get_block_timestamp", None)
        if block_number in self._block_times:
            return self._block_times[block_number]
        return datetime.fromtimestamp(block_number, tz=timezone.utc)

    # --------------------------------------------------------
    # INTERNALS
    # --------------------------------------------------------

    def _pool(self, pool_address: str) -> _PoolData:
        pool = self._pools.get(pool_address)
        if pool is None:
            raise NetworkError(
                f"Unknown pool {pool_address}",
                pool_address=pool_address,
                status_code=404,
            )
        return pool

    async def _before_call(self, method: str, pool_address: Optional[str]) -> None:
        self.calls[method] = self.calls.get(method, 0) + 1

        if self._config.latency_seconds > 0:
            await asyncio.sleep(self._config.latency_seconds)

        if self._config.always_fail:
            raise NetworkError("Simulated ledger outage", pool_address=pool_address, method=method)

        if self._config.fail_next > 0:
            self._config.fail_next -= 1
            raise NetworkError("Simulated ledger failure", pool_address=pool_address, method=method)


class InMemoryBalanceSource(BalanceSource):
    """
    Balance source backed by a dict keyed by (token, owner).
    """

    def __init__(self, balances: Optional[Dict[Tuple[str, str], int]] = None):
        self._balances: Dict[Tuple[str, str], int] = dict(balances or {})
        self._failing: set = set()
        self.calls: List[Tuple[str, str]] = []

    def set_balance(self, token_address: str, owner_address: str, balance: int) -> None:
        self._balances[(token_address, owner_address)] = balance

    def fail_for(self, token_address: str, owner_address: str) -> None:
        """Make lookups for one (token, owner) pair fail."""
        self._failing.add((token_address, owner_address))

    async def get_balance(self, token_address: str, owner_address: str) -> int:
        self.calls.append((token_address, owner_address))
        if (token_address, owner_address) in self._failing:
            raise NetworkError(
                f"Simulated balance failure for {owner_address}",
                method="get_balance",
            )
        return self._balances.get((token_address, owner_address), 0)
