"""
Trade Reconciliation Tests.

============================================================
PURPOSE
============================================================
Tests for merging cached and live trades and for the
reconciler's refresh cycle.

TEST CATEGORIES:
- Merge: identity, idempotence, split-independence, order
- Filter and stats
- Reconciler: cache degradation, live fetch, refresh cursor,
  write-through, coalescing, end-to-end

============================================================
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from launchpad_pipeline.cache import InMemoryTradeCache
from launchpad_pipeline.config import ReconcilerConfig
from launchpad_pipeline.errors import NetworkError
from launchpad_pipeline.ledger import InMemoryLedger, InMemoryLedgerConfig
from launchpad_pipeline.normalizer import EventNormalizer
from launchpad_pipeline.reconciliation import (
    TradeFilter,
    TradeReconciler,
    filter_trades,
    merge_trades,
    sort_trades,
    trade_stats,
)
from launchpad_pipeline.types import (
    CurveParameters,
    CurveState,
    RawLogEntry,
    TradeKind,
    TradeRecord,
)


POOL = "0x0123"
BUY = "0xb0b"
SELL = "0x5e11"
T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_record(tx: str, index: int = 0, minutes: int = 0, kind=TradeKind.BUY, counter: int = 100, block: int = 1):
    return TradeRecord(
        id=TradeRecord.make_id(tx, index),
        pool_address=POOL,
        trader="0xabc",
        kind=kind,
        amount=10,
        counter_value=counter,
        fee=0,
        price=counter * 10 ** 18 // 10,
        timestamp=T0 + timedelta(minutes=minutes),
        tx_hash=tx,
        block_number=block,
        log_index=index,
    )


def make_log(tx: str, block: int, index: int = 0, selector: str = BUY,
             amount: int = 10 ** 18, counter: int = 2 * 10 ** 18) -> RawLogEntry:
    return RawLogEntry(
        keys=[selector, "0xabc"],
        data=[hex(amount), "0x0", hex(counter), "0x0", "0x0", "0x0"],
        transaction_hash=tx,
        block_number=block,
        event_index=index,
        from_address=POOL,
    )


def make_ledger(latency: float = 0.0) -> InMemoryLedger:
    ledger = InMemoryLedger(InMemoryLedgerConfig(latency_seconds=latency))
    ledger.add_pool(
        POOL,
        CurveParameters(base_price=10 ** 15, slope=1),
        CurveState(tokens_sold=0, max_supply=10 ** 27),
    )
    return ledger


def make_reconciler(ledger, cache=None, **config_kwargs) -> TradeReconciler:
    return TradeReconciler(
        ledger,
        EventNormalizer(BUY, SELL),
        cache=cache,
        config=ReconcilerConfig(**config_kwargs),
    )


# ============================================================
# MERGE TESTS
# ============================================================

class TestMerge:
    """Tests for merge_trades."""

    def test_union_without_duplicates(self):
        cached = [make_record("0x1"), make_record("0x2", minutes=1)]
        live = [make_record("0x2", minutes=1), make_record("0x3", minutes=2)]

        result = merge_trades(cached, live)

        assert [r.id for r in result.records] == ["0x3_0", "0x2_0", "0x1_0"]
        assert [r.id for r in result.delta] == ["0x3_0"]

    def test_same_tx_different_log_index_kept(self):
        live = [make_record("0x1", index=0), make_record("0x1", index=1)]
        result = merge_trades([], live)
        assert len(result.records) == 2

    def test_duplicates_within_live_collapse(self):
        live = [make_record("0x1"), make_record("0x1")]
        result = merge_trades([], live)
        assert len(result.records) == 1
        assert len(result.delta) == 1

    def test_idempotent(self):
        cached = [make_record("0x1")]
        live = [make_record("0x2", minutes=1), make_record("0x3", minutes=2)]

        once = merge_trades(cached, live)
        twice = merge_trades(once.records, live)

        assert twice.records == once.records
        assert twice.delta == []

    def test_split_independent(self):
        """Test merging live trades in two pieces equals merging them at once."""
        cached = [make_record("0x1"), make_record("0x2", minutes=1)]
        live_a = [make_record("0x2", minutes=1), make_record("0x3", minutes=2)]
        live_b = [make_record("0x3", minutes=2), make_record("0x4", minutes=3)]

        stepwise = merge_trades(merge_trades(cached, live_a).records, live_b)
        combined = merge_trades(cached, live_a + live_b)

        assert stepwise.records == combined.records

    def test_live_version_wins(self):
        cached = [make_record("0x1", counter=100)]
        live = [make_record("0x1", counter=999)]

        result = merge_trades(cached, live)

        assert result.records[0].counter_value == 999
        assert result.delta == []

    def test_ascending_order(self):
        records = [make_record("0x2", minutes=5), make_record("0x1", minutes=1)]
        result = merge_trades([], records, newest_first=False)
        assert [r.tx_hash for r in result.records] == ["0x1", "0x2"]

    def test_sort_tie_broken_by_log_index(self):
        records = [make_record("0x1", index=1), make_record("0x1", index=0)]
        ordered = sort_trades(records, newest_first=False)
        assert [r.log_index for r in ordered] == [0, 1]


# ============================================================
# FILTER AND STATS TESTS
# ============================================================

class TestFilterAndStats:
    """Tests for filter_trades and trade_stats."""

    @pytest.fixture
    def records(self):
        return [
            make_record("0x1", minutes=0, kind=TradeKind.BUY, counter=100),
            make_record("0x2", minutes=10, kind=TradeKind.SELL, counter=40),
            make_record("0x3", minutes=20, kind=TradeKind.BUY, counter=60),
        ]

    def test_filter_by_kind(self, records):
        buys = filter_trades(records, TradeFilter(kind=TradeKind.BUY))
        assert [r.tx_hash for r in buys] == ["0x1", "0x3"]

    def test_filter_by_time_range(self, records):
        window = TradeFilter(start_time=T0 + timedelta(minutes=5), end_time=T0 + timedelta(minutes=20))
        assert [r.tx_hash for r in filter_trades(records, window)] == ["0x2", "0x3"]

    def test_empty_filter_matches_all(self, records):
        assert filter_trades(records, TradeFilter()) == records

    def test_stats(self, records):
        stats = trade_stats(records)
        assert stats.buy_count == 2
        assert stats.sell_count == 1
        assert stats.total_count == 3
        assert stats.total_volume == 200
        assert stats.buy_volume == 160
        assert stats.sell_volume == 40

    def test_stats_empty(self):
        stats = trade_stats([])
        assert stats.total_count == 0
        assert stats.total_volume == 0


# ============================================================
# RECONCILER CACHE TESTS
# ============================================================

class TestReconcilerCache:
    """Tests for best-effort cache access."""

    @pytest.mark.asyncio
    async def test_no_cache(self):
        reconciler = make_reconciler(make_ledger())
        assert await reconciler.load_cached(POOL) == []

    @pytest.mark.asyncio
    async def test_cache_miss_is_empty(self):
        reconciler = make_reconciler(make_ledger(), InMemoryTradeCache())
        assert await reconciler.load_cached(POOL) == []

    @pytest.mark.asyncio
    async def test_failing_cache_is_empty(self):
        cache = InMemoryTradeCache()
        cache.seed(POOL, [make_record("0x1")])
        cache.fail_reads = True

        reconciler = make_reconciler(make_ledger(), cache)

        assert await reconciler.load_cached(POOL) == []

    @pytest.mark.asyncio
    async def test_slow_cache_times_out(self):
        cache = InMemoryTradeCache(read_latency_seconds=0.5)
        cache.seed(POOL, [make_record("0x1")])

        reconciler = make_reconciler(make_ledger(), cache, cache_timeout_seconds=0.01)

        assert await reconciler.load_cached(POOL) == []

    @pytest.mark.asyncio
    async def test_write_failure_not_raised(self):
        cache = InMemoryTradeCache()
        cache.fail_writes = True
        reconciler = make_reconciler(make_ledger(), cache)

        assert await reconciler.persist_delta(POOL, [make_record("0x1")]) == 0


# ============================================================
# RECONCILER LIVE TESTS
# ============================================================

class TestReconcilerLive:
    """Tests for live fetching and refresh."""

    @pytest.mark.asyncio
    async def test_fetch_live_skips_malformed(self):
        ledger = make_ledger()
        ledger.emit(POOL, make_log("0x1", block=5))
        ledger.emit(POOL, make_log("0x2", block=5, selector="0x999"))
        ledger.emit(POOL, RawLogEntry(keys=[BUY], data=[], transaction_hash="0x3", block_number=6))

        records = await make_reconciler(ledger).fetch_live(POOL, 0)

        assert [r.tx_hash for r in records] == ["0x1"]

    @pytest.mark.asyncio
    async def test_block_timestamps_fetched_once_per_block(self):
        ledger = make_ledger()
        ledger.emit(POOL, make_log("0x1", block=5, index=0))
        ledger.emit(POOL, make_log("0x1", block=5, index=1))
        ledger.emit(POOL, make_log("0x2", block=6))

        records = await make_reconciler(ledger).fetch_live(POOL, 0)

        assert len(records) == 3
        assert ledger.calls["get_block_timestamp"] == 2

    @pytest.mark.asyncio
    async def test_timestamp_from_block(self):
        ledger = make_ledger()
        block_time = datetime(2024, 6, 1, 8, 30, tzinfo=timezone.utc)
        ledger.set_block_time(5, block_time)
        ledger.emit(POOL, make_log("0x1", block=5))

        records = await make_reconciler(ledger).fetch_live(POOL, 0)

        assert records[0].timestamp == block_time

    @pytest.mark.asyncio
    async def test_ledger_failure_raises(self):
        ledger = make_ledger()
        ledger.set_always_fail(True)

        with pytest.raises(NetworkError):
            await make_reconciler(ledger).refresh(POOL)

    @pytest.mark.asyncio
    async def test_refresh_cursor_advances(self):
        ledger = make_ledger()
        ledger.emit(POOL, make_log("0x1", block=5))
        reconciler = make_reconciler(ledger, start_block=3)

        first = await reconciler.refresh(POOL)
        assert first.from_block == 3
        assert len(first.new_records) == 1

        ledger.emit(POOL, make_log("0x2", block=8))
        second = await reconciler.refresh(POOL)

        assert second.from_block == 6
        assert [r.tx_hash for r in second.new_records] == ["0x2"]
        assert [r.tx_hash for r in second.records] == ["0x2", "0x1"]

    @pytest.mark.asyncio
    async def test_first_refresh_starts_at_highest_cached_block(self):
        ledger = make_ledger()
        cache = InMemoryTradeCache()
        cache.seed(POOL, [make_record("0xold", block=40)])

        history = await make_reconciler(ledger, cache).refresh(POOL)

        assert history.from_block == 40
        assert [r.tx_hash for r in history.records] == ["0xold"]

    @pytest.mark.asyncio
    async def test_failed_first_fetch_keeps_cached_block(self):
        """Test a trade sharing a block with a cached one survives a failed first fetch."""
        ledger = make_ledger()
        ledger.emit(POOL, make_log("0xa", block=10, index=0))
        ledger.emit(POOL, make_log("0xb", block=10, index=1))
        cache = InMemoryTradeCache()
        cache.seed(POOL, [make_record("0xa", index=0, block=10)])
        reconciler = make_reconciler(ledger, cache)

        ledger.fail_next(1)
        with pytest.raises(NetworkError):
            await reconciler.refresh(POOL)

        history = await reconciler.refresh(POOL)
        await reconciler.close()

        assert history.from_block == 10
        assert "0xb" in [r.tx_hash for r in history.records]
        assert [r.tx_hash for r in history.new_records] == ["0xb"]

    @pytest.mark.asyncio
    async def test_cursor_moves_past_cached_block_after_success(self):
        ledger = make_ledger()
        cache = InMemoryTradeCache()
        cache.seed(POOL, [make_record("0xold", block=40)])
        reconciler = make_reconciler(ledger, cache)

        await reconciler.refresh(POOL)
        second = await reconciler.refresh(POOL)

        assert second.from_block == 41

    @pytest.mark.asyncio
    async def test_new_trades_written_through(self):
        ledger = make_ledger()
        ledger.emit(POOL, make_log("0x1", block=5))
        cache = InMemoryTradeCache()
        reconciler = make_reconciler(ledger, cache)

        await reconciler.refresh(POOL)
        await reconciler.close()

        assert [r.tx_hash for r in cache.stored(POOL)] == ["0x1"]

    @pytest.mark.asyncio
    async def test_ascending_history(self):
        ledger = make_ledger()
        ledger.emit(POOL, make_log("0x1", block=5))
        ledger.emit(POOL, make_log("0x2", block=9))

        history = await make_reconciler(ledger, newest_first=False).refresh(POOL)

        assert [r.tx_hash for r in history.records] == ["0x1", "0x2"]

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_coalesce(self):
        ledger = make_ledger(latency=0.05)
        ledger.emit(POOL, make_log("0x1", block=5))
        reconciler = make_reconciler(ledger)

        first, second = await asyncio.gather(
            reconciler.refresh(POOL),
            reconciler.refresh(POOL),
        )

        assert ledger.calls["get_event_logs"] == 1
        assert first.records == second.records

    @pytest.mark.asyncio
    async def test_history_filter_and_stats(self):
        ledger = make_ledger()
        ledger.emit(POOL, make_log("0x1", block=5))
        ledger.emit(POOL, make_log("0x2", block=6, selector=SELL, counter=10 ** 18))

        history = await make_reconciler(ledger).refresh(POOL)

        assert len(history.filter(TradeFilter(kind=TradeKind.SELL))) == 1
        stats = history.stats()
        assert stats.buy_count == 1
        assert stats.sell_count == 1
        assert stats.total_volume == 3 * 10 ** 18


# ============================================================
# END-TO-END TESTS
# ============================================================

class TestEndToEnd:
    """Cache and live agree on one trade."""

    @pytest.mark.asyncio
    async def test_buy_reconciled_once(self):
        """Test buying 1 token for 2e18 yields one record priced 2e18."""
        ledger = make_ledger()
        raw = make_log("0xfeed", block=12, index=0)
        ledger.emit(POOL, raw)

        normalizer = EventNormalizer(BUY, SELL)
        cached_record = normalizer.normalize(raw, datetime.fromtimestamp(12, tz=timezone.utc))

        cache = InMemoryTradeCache()
        cache.seed(POOL, [cached_record])

        reconciler = TradeReconciler(ledger, normalizer, cache=cache)
        history = await reconciler.refresh(POOL)
        await reconciler.close()

        assert len(history.records) == 1
        record = history.records[0]
        assert record.id == "0xfeed_0"
        assert record.kind == TradeKind.BUY
        assert record.amount == 10 ** 18
        assert record.counter_value == 2 * 10 ** 18
        assert record.price == 2 * 10 ** 18
        assert history.new_records == []
        assert cache.write_calls == 0
