"""
Launchpad Pipeline - Trade Reconciliation.

============================================================
PURPOSE
============================================================
Merges cached and freshly fetched trade records into one
duplicate-free, ordered trade history per pool.

RESPONSIBILITIES:
- Load cached trades (best effort)
- Fetch and normalize live trade events
- Merge by identity (tx_hash + log index)
- Write new trades back to the cache off the critical path
- Filter and summarize trade history

CRITICAL INVARIANT:
    "One event, one record."
    Merging the same live trades again changes nothing, and
    merging live trades in pieces gives the same history as
    merging them all at once.

FAILURES:
- Cache unavailable   -> live only, warning logged
- Ledger unavailable  -> NetworkError to the caller
- Malformed log entry -> skipped, warning logged

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

from .cache.base import TradeCacheStore
from .config import ReconcilerConfig
from .errors import NetworkError, NormalizationError, NotFoundError
from .ledger.base import LedgerReader
from .normalizer import EventNormalizer
from .types import TradeKind, TradeRecord


logger = logging.getLogger(__name__)


# ============================================================
# RECONCILIATION TYPES
# ============================================================

@dataclass
class MergeResult:
    """Result of merging cached and live records."""

    records: List[TradeRecord]
    """Merged, duplicate-free, sorted records."""

    delta: List[TradeRecord] = field(default_factory=list)
    """Live records that were not in the cached set."""


@dataclass
class TradeFilter:
    """Trade history filter. Unset fields match everything."""

    kind: Optional[TradeKind] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def matches(self, record: TradeRecord) -> bool:
        if self.kind is not None and record.kind != self.kind:
            return False
        if self.start_time is not None and record.timestamp < self.start_time:
            return False
        if self.end_time is not None and record.timestamp > self.end_time:
            return False
        return True


@dataclass
class TradeStats:
    """Summary of a set of trades."""

    buy_count: int = 0
    sell_count: int = 0
    total_volume: int = 0
    """Sum of counter values."""

    buy_volume: int = 0
    sell_volume: int = 0

    @property
    def total_count(self) -> int:
        return self.buy_count + self.sell_count


@dataclass
class TradeHistory:
    """Trade history of one pool after a refresh."""

    pool_address: str
    """Pool the trades belong to."""

    records: List[TradeRecord]
    """All known trades, in display order."""

    new_records: List[TradeRecord] = field(default_factory=list)
    """Trades first seen in this refresh."""

    from_block: int = 0
    """First block queried by this refresh."""

    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    """When the refresh completed."""

    def filter(self, trade_filter: TradeFilter) -> List[TradeRecord]:
        return filter_trades(self.records, trade_filter)

    def stats(self, trade_filter: Optional[TradeFilter] = None) -> TradeStats:
        records = self.filter(trade_filter) if trade_filter else self.records
        return trade_stats(records)

    def __len__(self) -> int:
        return len(self.records)


# ============================================================
# PURE OPERATIONS
# ============================================================

def _sort_key(record: TradeRecord):
    return (
        record.timestamp,
        record.block_number if record.block_number is not None else -1,
        record.log_index if record.log_index is not None else -1,
        record.id,
    )


def sort_trades(records: Iterable[TradeRecord], newest_first: bool = True) -> List[TradeRecord]:
    """Sort by timestamp, then block and log index for a stable order."""
    return sorted(records, key=_sort_key, reverse=newest_first)


def merge_trades(
    cached: Iterable[TradeRecord],
    live: Iterable[TradeRecord],
    newest_first: bool = True,
) -> MergeResult:
    """
    Merge cached and live records by id.

    The live version of a record replaces the cached one; among
    live duplicates the last one wins. The delta holds each live
    id absent from the cached set once.

    Args:
        cached: Records loaded from the cache
        live: Records fetched from the ledger
        newest_first: Sort order of the merged records

    Returns:
        MergeResult
    """
    merged: Dict[str, TradeRecord] = {}
    for record in cached:
        merged.setdefault(record.id, record)

    cached_ids = set(merged)
    delta: Dict[str, TradeRecord] = {}

    for record in live:
        merged[record.id] = record
        if record.id not in cached_ids:
            delta[record.id] = record

    return MergeResult(
        records=sort_trades(merged.values(), newest_first),
        delta=sort_trades(delta.values(), newest_first),
    )


def filter_trades(records: Iterable[TradeRecord], trade_filter: TradeFilter) -> List[TradeRecord]:
    """Records matching the filter, order preserved."""
    return [record for record in records if trade_filter.matches(record)]


def trade_stats(records: Iterable[TradeRecord]) -> TradeStats:
    """Count trades per kind and sum their counter values."""
    stats = TradeStats()
    for record in records:
        if record.kind == TradeKind.BUY:
            stats.buy_count += 1
            stats.buy_volume += record.counter_value
        else:
            stats.sell_count += 1
            stats.sell_volume += record.counter_value
        stats.total_volume += record.counter_value
    return stats


# ============================================================
# TRADE RECONCILER
# ============================================================

@dataclass
class _PoolCursor:
    records: List[TradeRecord] = field(default_factory=list)

    next_block: int = 0
    """First block of the next fetch; advances only after a successful fetch."""


class TradeReconciler:
    """
    Keeps a reconciled trade history per pool.

    Refreshes for one pool are coalesced: a refresh requested
    while another is running waits for and returns that one.
    """

    def __init__(
        self,
        ledger: LedgerReader,
        normalizer: EventNormalizer,
        cache: Optional[TradeCacheStore] = None,
        config: Optional[ReconcilerConfig] = None,
    ):
        """
        Initialize reconciler.

        Args:
            ledger: Source of event logs and block timestamps
            normalizer: Decoder for the pools' trade events
            cache: Optional trade cache
            config: Reconciler configuration
        """
        self._ledger = ledger
        self._normalizer = normalizer
        self._cache = cache
        self._config = config or ReconcilerConfig()

        self._pool_normalizers: Dict[str, EventNormalizer] = {}
        self._cursors: Dict[str, _PoolCursor] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._pending_writes: Set[asyncio.Task] = set()

    def set_token_decimals(self, pool_address: str, decimals: int) -> None:
        """Use different token decimals for one pool's unit prices."""
        self._pool_normalizers[pool_address] = self._normalizer.with_decimals(decimals)

    def known_records(self, pool_address: str) -> List[TradeRecord]:
        """Reconciled records held for a pool, newest first."""
        cursor = self._cursors.get(pool_address)
        return list(cursor.records) if cursor else []

    # --------------------------------------------------------
    # CACHE
    # --------------------------------------------------------

    async def load_cached(self, pool_address: str) -> List[TradeRecord]:
        """
        Read cached trades for a pool.

        Never raises: a missing, slow or failing cache yields [].
        """
        if self._cache is None:
            return []

        try:
            return await asyncio.wait_for(
                self._cache.read_trades(pool_address, self._config.cache_read_limit),
                timeout=self._config.cache_timeout_seconds,
            )
        except NotFoundError:
            logger.debug(f"No cached trades for {pool_address}")
        except asyncio.TimeoutError:
            logger.warning(f"Cache read timed out for {pool_address}, using live data only")
        except Exception as e:
            logger.warning(f"Cache read failed for {pool_address}, using live data only: {e}")

        return []

    async def persist_delta(self, pool_address: str, records: List[TradeRecord]) -> int:
        """
        Write new trades to the cache.

        Never raises: failures are logged and reported as 0 writes.
        """
        if self._cache is None or not records:
            return 0

        try:
            return await self._cache.write_trades(pool_address, records)
        except Exception as e:
            logger.warning(f"Cache write failed for {pool_address} ({len(records)} trades): {e}")
            return 0

    # --------------------------------------------------------
    # LIVE
    # --------------------------------------------------------

    async def fetch_live(self, pool_address: str, from_block: int) -> List[TradeRecord]:
        """
        Fetch and normalize a pool's trades from from_block on.

        Raises:
            NetworkError: If the ledger cannot be reached
        """
        normalizer = self._pool_normalizers.get(pool_address, self._normalizer)
        logs = await self._ledger.get_event_logs(pool_address, from_block)

        block_times: Dict[int, datetime] = {}
        records: List[TradeRecord] = []

        for raw in logs:
            if raw.block_number is None:
                logger.warning(f"Skipping trade event without block in tx {raw.transaction_hash}")
                continue

            if raw.block_number not in block_times:
                block_times[raw.block_number] = await self._ledger.get_block_timestamp(raw.block_number)

            try:
                records.append(normalizer.normalize(raw, block_times[raw.block_number], pool_address))
            except NormalizationError as e:
                logger.warning(f"Skipping malformed trade event: {e}")

        logger.debug(
            f"Fetched {len(records)} trades for {pool_address} "
            f"({len(logs) - len(records)} skipped) from block {from_block}"
        )
        return records

    # --------------------------------------------------------
    # REFRESH
    # --------------------------------------------------------

    async def refresh(self, pool_address: str) -> TradeHistory:
        """
        Bring a pool's trade history up to date.

        Raises:
            NetworkError: If the ledger cannot be reached
        """
        task = self._inflight.get(pool_address)
        if task is None:
            task = asyncio.ensure_future(self._refresh(pool_address))
            self._inflight[pool_address] = task
            task.add_done_callback(lambda _: self._inflight.pop(pool_address, None))
        else:
            logger.debug(f"Joining in-flight trade refresh for {pool_address}")

        return await asyncio.shield(task)

    async def _refresh(self, pool_address: str) -> TradeHistory:
        cursor = self._cursors.get(pool_address)

        if cursor is None:
            cached = await self.load_cached(pool_address)
            cached_block = _max_block(cached)
            cursor = _PoolCursor(
                records=sort_trades(cached),
                # The highest cached block may hold events not cached yet
                next_block=cached_block if cached_block is not None else self._config.start_block,
            )
            self._cursors[pool_address] = cursor

        from_block = cursor.next_block

        try:
            live = await asyncio.wait_for(
                self.fetch_live(pool_address, from_block),
                timeout=self._config.request_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"Trade fetch timed out after {self._config.request_timeout_seconds}s",
                pool_address=pool_address,
                method="get_event_logs",
                timed_out=True,
                original_error=e,
            )

        result = merge_trades(cursor.records, live)
        cursor.records = result.records

        known_block = _max_block(result.records)
        if known_block is not None:
            cursor.next_block = max(cursor.next_block, known_block + 1)

        if result.delta:
            logger.info(f"Reconciled {len(result.delta)} new trades for {pool_address}")
            self._schedule_persist(pool_address, result.delta)

        records = result.records if self._config.newest_first else list(reversed(result.records))
        return TradeHistory(
            pool_address=pool_address,
            records=records,
            new_records=result.delta,
            from_block=from_block,
        )

    def _schedule_persist(self, pool_address: str, records: List[TradeRecord]) -> None:
        if self._cache is None:
            return
        task = asyncio.ensure_future(self.persist_delta(pool_address, records))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def flush(self) -> None:
        """Wait for background cache writes to finish."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    async def close(self) -> None:
        """Wait for in-flight refreshes and cache writes."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)
        await self.flush()


def _max_block(records: Iterable[TradeRecord]) -> Optional[int]:
    blocks = [r.block_number for r in records if r.block_number is not None]
    return max(blocks) if blocks else None
