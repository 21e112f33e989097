"""
Launchpad Pipeline - Trade Cache Store.

============================================================
PURPOSE
============================================================
Interface of the persisted trade cache and an in-memory
implementation.

The cache is an accelerator, never a source of truth:
callers treat every failure as "nothing cached".

============================================================
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from ..errors import CacheError, NotFoundError
from ..types import TradeRecord


logger = logging.getLogger(__name__)


class TradeCacheStore(ABC):
    """
    Persisted trade records keyed by pool.
    """

    @abstractmethod
    async def read_trades(self, pool_address: str, limit: Optional[int] = None) -> List[TradeRecord]:
        """
        Read cached trades, newest first.

        Raises:
            CacheError: If the store is unavailable
            NotFoundError: If nothing is cached for the pool
        """
        pass

    @abstractmethod
    async def write_trades(self, pool_address: str, records: Sequence[TradeRecord]) -> int:
        """
        Insert records, ignoring ones already stored (same id).

        Returns:
            Number of records actually inserted

        Raises:
            CacheError: If the store is unavailable
        """
        pass

    async def close(self) -> None:
        """Release resources."""
        return None


class InMemoryTradeCache(TradeCacheStore):
    """
    Dict-backed cache with failure injection for tests.
    """

    def __init__(self, read_latency_seconds: float = 0.0):
        self._trades: Dict[str, Dict[str, TradeRecord]] = {}
        self.read_latency_seconds = read_latency_seconds
        self.fail_reads = False
        self.fail_writes = False
        self.write_calls = 0

    def seed(self, pool_address: str, records: Sequence[TradeRecord]) -> None:
        """Preload records without going through write_trades()."""
        bucket = self._trades.setdefault(pool_address, {})
        for record in records:
            bucket.setdefault(record.id, record)

    def stored(self, pool_address: str) -> List[TradeRecord]:
        """All stored records for a pool, in insertion order."""
        return list(self._trades.get(pool_address, {}).values())

    async def read_trades(self, pool_address: str, limit: Optional[int] = None) -> List[TradeRecord]:
        if self.read_latency_seconds > 0:
            await asyncio.sleep(self.read_latency_seconds)

        if self.fail_reads:
            raise CacheError("Simulated cache read failure", pool_address=pool_address)

        bucket = self._trades.get(pool_address)
        if not bucket:
            raise NotFoundError(
                f"No cached trades for {pool_address}",
                pool_address=pool_address,
                key=pool_address,
            )

        records = sorted(bucket.values(), key=lambda r: r.timestamp, reverse=True)
        return records[:limit] if limit else records

    async def write_trades(self, pool_address: str, records: Sequence[TradeRecord]) -> int:
        self.write_calls += 1

        if self.fail_writes:
            raise CacheError("Simulated cache write failure", pool_address=pool_address, operation="write")

        bucket = self._trades.setdefault(pool_address, {})
        inserted = 0
        for record in records:
            if record.id not in bucket:
                bucket[record.id] = record
                inserted += 1
        return inserted
