"""
Launchpad Pipeline - Price Poller.

============================================================
PURPOSE
============================================================
Keeps a pool's curve price current, detects stale data and
recovers from transient ledger failures.

SCHEDULE:
- start(): fetch now, then every polling_interval
- failure: retry after retry_delay while running and retries remain
- retries exhausted: DISCONNECTED until the next scheduled
  tick or a manual refresh()

CRITICAL CONSTRAINTS:
- One fetch per pool at a time; overlapping ticks are skipped
- stop() cancels every timer; results of fetches still in
  flight are discarded (generation counter)
- Every ledger call is bounded by request_timeout

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from .config import PollerConfig
from .errors import NetworkError, PipelineError
from .ledger.base import LedgerReader
from .pricing import (
    NO_CHANGE,
    PriceChange,
    calculate_market_cap,
    calculate_price_change,
    calculate_progress,
    curve_price,
)
from .state_machine import ConnectionStateMachine, StatusTransitionEvent
from .types import ConnectionStatus, CurveState, DataState, PriceSample


logger = logging.getLogger(__name__)


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# PRICE SNAPSHOT
# ============================================================

@dataclass
class PriceSnapshot:
    """Everything a consumer needs to display a pool's price."""

    pool_address: str
    status: ConnectionStatus
    data_state: DataState

    price: Optional[int] = None
    """Current unit price, None before the first success."""

    previous_price: Optional[int] = None
    change: PriceChange = NO_CHANGE
    is_stale: bool = False
    last_updated: Optional[datetime] = None
    last_error: Optional[PipelineError] = None

    tokens_sold: Optional[int] = None
    max_supply: Optional[int] = None
    progress: float = 0.0
    market_cap: Optional[int] = None
    migrated: bool = False

    taken_at: datetime = field(default_factory=utc_now)

    @property
    def change_percentage(self) -> float:
        return self.change.percentage

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary; uint256 fields become decimal strings."""

        def _str(value: Optional[int]) -> Optional[str]:
            return str(value) if value is not None else None

        return {
            "pool_address": self.pool_address,
            "status": self.status.value,
            "data_state": self.data_state.value,
            "price": _str(self.price),
            "previous_price": _str(self.previous_price),
            "change_direction": self.change.direction.value,
            "change_amount": str(self.change.amount),
            "change_percentage": self.change.percentage,
            "is_stale": self.is_stale,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "last_error": self.last_error.to_dict() if self.last_error else None,
            "tokens_sold": _str(self.tokens_sold),
            "max_supply": _str(self.max_supply),
            "progress": self.progress,
            "market_cap": _str(self.market_cap),
            "migrated": self.migrated,
        }


SnapshotListener = Callable[[PriceSnapshot], None]


# ============================================================
# PRICE POLLER
# ============================================================

class PricePoller:
    """
    Periodic price fetcher for one pool.
    """

    def __init__(
        self,
        ledger: LedgerReader,
        pool_address: str,
        config: Optional[PollerConfig] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize poller.

        Args:
            ledger: Ledger to read curve state and parameters from
            pool_address: Pool to poll
            config: Schedule and retry policy
            clock: Source of the current time (UTC)

        Raises:
            ConfigurationError: If the policy is inconsistent
        """
        self._config = config or PollerConfig()
        self._config.validate()

        self._ledger = ledger
        self._pool_address = pool_address
        self._clock = clock or utc_now

        self._state_machine = ConnectionStateMachine(
            pool_address,
            max_retry_attempts=self._config.max_retry_attempts,
        )

        self._current: Optional[PriceSample] = None
        self._previous: Optional[PriceSample] = None
        self._curve_state: Optional[CurveState] = None
        self._last_error: Optional[PipelineError] = None

        self._lock = asyncio.Lock()
        self._generation = 0
        self._running = False
        self._tick_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None

        self._listeners: List[SnapshotListener] = []

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def pool_address(self) -> str:
        return self._pool_address

    @property
    def status(self) -> ConnectionStatus:
        return self._state_machine.status

    @property
    def state_machine(self) -> ConnectionStateMachine:
        return self._state_machine

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def current(self) -> Optional[PriceSample]:
        return self._current

    @property
    def previous(self) -> Optional[PriceSample]:
        return self._previous

    @property
    def last_error(self) -> Optional[PipelineError]:
        return self._last_error

    @property
    def is_stale(self) -> bool:
        """Latest sample older than the stale threshold. False with no sample."""
        if self._current is None:
            return False
        age = (self._clock() - self._current.observed_at).total_seconds()
        return age > self._config.stale_threshold_seconds

    @property
    def data_state(self) -> DataState:
        if self._last_error is not None:
            return DataState.FAILED
        if self._current is None:
            return DataState.NO_DATA
        if self.is_stale:
            return DataState.STALE
        return DataState.FRESH

    def add_listener(self, listener: SnapshotListener) -> None:
        """Receive a snapshot after every completed fetch."""
        self._listeners.append(listener)

    def add_status_listener(self, listener: Callable[[StatusTransitionEvent], None]) -> None:
        self._state_machine.add_listener(listener)

    # --------------------------------------------------------
    # SNAPSHOT
    # --------------------------------------------------------

    def snapshot(self) -> PriceSnapshot:
        """Current view of the pool's price."""
        current_price = self._current.price if self._current else None
        previous_price = self._previous.price if self._previous else None

        snapshot = PriceSnapshot(
            pool_address=self._pool_address,
            status=self.status,
            data_state=self.data_state,
            price=current_price,
            previous_price=previous_price,
            is_stale=self.is_stale,
            last_updated=self._current.observed_at if self._current else None,
            last_error=self._last_error,
            taken_at=self._clock(),
        )

        if current_price is not None:
            snapshot.change = calculate_price_change(current_price, previous_price)

        if self._curve_state is not None:
            snapshot.tokens_sold = self._curve_state.tokens_sold
            snapshot.max_supply = self._curve_state.max_supply
            snapshot.migrated = self._curve_state.migrated
            snapshot.progress = calculate_progress(
                self._curve_state.tokens_sold,
                self._curve_state.max_supply,
            )
            if current_price is not None:
                snapshot.market_cap = calculate_market_cap(current_price, self._curve_state.tokens_sold)

        return snapshot

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        """Fetch now, then keep fetching every polling interval."""
        if self._running:
            return

        self._running = True
        generation = self._generation

        logger.info(
            f"Starting price poller for {self._pool_address} "
            f"(every {self._config.polling_interval_seconds}s)"
        )

        await self._tick(generation)
        if generation == self._generation:
            self._tick_task = asyncio.ensure_future(self._run(generation))

    async def stop(self) -> None:
        """Cancel all timers and discard in-flight results."""
        self._running = False
        self._generation += 1

        tasks = [t for t in (self._tick_task, self._retry_task) if t is not None]
        self._tick_task = None
        self._retry_task = None

        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._state_machine.mark_disconnected("Poller stopped")
        logger.info(f"Stopped price poller for {self._pool_address}")

    async def refresh(self) -> PriceSnapshot:
        """
        Fetch immediately with a fresh retry budget.

        Waits for an in-flight fetch to finish instead of running
        alongside it.
        """
        self._cancel_retry()
        self._state_machine.reset_failures()

        generation = self._generation
        async with self._lock:
            await self._fetch(generation)

        return self.snapshot()

    async def __aenter__(self) -> "PricePoller":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    # --------------------------------------------------------
    # SCHEDULING
    # --------------------------------------------------------

    async def _run(self, generation: int) -> None:
        while generation == self._generation:
            await asyncio.sleep(self._config.polling_interval_seconds)
            if generation != self._generation:
                return
            await self._tick(generation)

    async def _tick(self, generation: int) -> None:
        if self._lock.locked():
            logger.debug(f"Skipping tick for {self._pool_address}: fetch in flight")
            return

        async with self._lock:
            await self._fetch(generation)

    async def _retry_after_delay(self, generation: int) -> None:
        await asyncio.sleep(self._config.retry_delay_seconds)
        if generation != self._generation:
            return
        await self._tick(generation)

    def _cancel_retry(self) -> None:
        task = self._retry_task
        self._retry_task = None
        # A failing retry reschedules from inside its own task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # --------------------------------------------------------
    # FETCH
    # --------------------------------------------------------

    async def _fetch(self, generation: int) -> None:
        timeout = self._config.request_timeout_seconds
        error: Optional[PipelineError] = None
        state: Optional[CurveState] = None
        params = None

        try:
            state, params = await asyncio.gather(
                asyncio.wait_for(self._ledger.get_curve_state(self._pool_address), timeout),
                asyncio.wait_for(self._ledger.get_curve_parameters(self._pool_address), timeout),
            )
        except asyncio.TimeoutError as e:
            error = NetworkError(
                f"Price fetch timed out after {timeout}s",
                pool_address=self._pool_address,
                timed_out=True,
                original_error=e,
            )
        except PipelineError as e:
            error = e
        except Exception as e:
            error = NetworkError(
                f"Unexpected price fetch failure: {e}",
                pool_address=self._pool_address,
                original_error=e,
            )

        if generation != self._generation:
            logger.debug(f"Discarding price result for {self._pool_address}: poller reset")
            return

        if error is None:
            self._on_success(state, params)
        else:
            self._on_failure(error, generation)

        self._notify()

    def _on_success(self, state: CurveState, params) -> None:
        sample = PriceSample(
            price=curve_price(params, state.tokens_sold),
            tokens_sold=state.tokens_sold,
            observed_at=self._clock(),
        )

        self._previous = self._current
        self._current = sample
        self._curve_state = state
        self._last_error = None
        self._state_machine.record_success()

        logger.debug(f"Price for {self._pool_address}: {sample.price}")

    def _on_failure(self, error: PipelineError, generation: int) -> None:
        self._last_error = error
        should_retry = self._state_machine.record_failure(error)

        logger.warning(
            f"Price fetch failed for {self._pool_address} "
            f"({self._state_machine.consecutive_failures}/{self._config.max_retry_attempts}): "
            f"{error.message}"
        )

        # Automatic retries belong to a running schedule
        if should_retry and self._running:
            self._cancel_retry()
            self._retry_task = asyncio.ensure_future(self._retry_after_delay(generation))

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Price listener error: {e}")


# ============================================================
# POLLER POOL
# ============================================================

class PricePollerPool:
    """
    Independent pollers, one per pool.

    Pollers share the ledger client but no state.
    """

    def __init__(
        self,
        ledger: LedgerReader,
        config: Optional[PollerConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self._ledger = ledger
        self._config = config or PollerConfig()
        self._clock = clock
        self._pollers: Dict[str, PricePoller] = {}

    async def add(self, pool_address: str, auto_start: bool = True) -> PricePoller:
        """
        Add a poller for a pool (existing poller is returned as is).

        Args:
            pool_address: Pool to poll
            auto_start: Start polling immediately
        """
        poller = self._pollers.get(pool_address)
        if poller is None:
            poller = PricePoller(self._ledger, pool_address, self._config, self._clock)
            self._pollers[pool_address] = poller

        if auto_start:
            await poller.start()
        return poller

    async def remove(self, pool_address: str) -> None:
        """Stop and remove a pool's poller."""
        poller = self._pollers.pop(pool_address, None)
        if poller is not None:
            await poller.stop()

    def get(self, pool_address: str) -> Optional[PricePoller]:
        return self._pollers.get(pool_address)

    def __getitem__(self, pool_address: str) -> PricePoller:
        if pool_address not in self._pollers:
            raise KeyError(f"Poller not found: {pool_address}")
        return self._pollers[pool_address]

    def __contains__(self, pool_address: str) -> bool:
        return pool_address in self._pollers

    def __len__(self) -> int:
        return len(self._pollers)

    def __iter__(self) -> Iterator[PricePoller]:
        return iter(list(self._pollers.values()))

    def snapshots(self) -> Dict[str, PriceSnapshot]:
        """Current snapshot of every pool."""
        return {address: poller.snapshot() for address, poller in self._pollers.items()}

    def prices(self) -> Dict[str, int]:
        """Latest known price per pool, pools without a sample omitted."""
        return {
            address: poller.current.price
            for address, poller in self._pollers.items()
            if poller.current is not None
        }

    async def stop_all(self) -> None:
        await asyncio.gather(*(poller.stop() for poller in self._pollers.values()))

    async def __aenter__(self) -> "PricePollerPool":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop_all()
