"""
Launchpad Pipeline - Trade History Feed.

============================================================
PURPOSE
============================================================
Incremental trade subscription for one pool.

Every trade_poll_interval the feed refreshes the pool through
the reconciler and hands each trade it has not delivered yet
to the subscriber, once.

unsubscribe() cancels the schedule at once; a refresh that
completes afterwards is discarded.

============================================================
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Set, Union

from .config import ReconcilerConfig
from .errors import PipelineError
from .reconciliation import TradeReconciler, sort_trades
from .types import TradeRecord


logger = logging.getLogger(__name__)


TradeCallback = Callable[[List[TradeRecord]], Union[None, Awaitable[None]]]


class TradeHistoryFeed:
    """
    Polls a pool's trades and delivers only new, unique ones.
    """

    def __init__(
        self,
        reconciler: TradeReconciler,
        pool_address: str,
        config: Optional[ReconcilerConfig] = None,
    ):
        self._reconciler = reconciler
        self._pool_address = pool_address
        self._interval = (config or ReconcilerConfig()).trade_poll_interval_seconds

        self._callback: Optional[TradeCallback] = None
        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self._delivered: Set[str] = set()

    @property
    def is_subscribed(self) -> bool:
        return self._task is not None and not self._task.done()

    async def subscribe(self, callback: TradeCallback, deliver_initial: bool = False) -> None:
        """
        Start delivering new trades to callback.

        The current history is loaded first; it goes to the callback
        only when deliver_initial is set.

        Raises:
            RuntimeError: If already subscribed
            NetworkError: If the initial load fails
        """
        if self.is_subscribed:
            raise RuntimeError(f"Feed for {self._pool_address} already has a subscriber")

        self._generation += 1
        generation = self._generation
        self._callback = callback

        history = await self._reconciler.refresh(self._pool_address)
        if generation != self._generation:
            return

        if deliver_initial:
            await self._deliver(history.records, generation)
        else:
            self._delivered.update(record.id for record in history.records)

        self._task = asyncio.ensure_future(self._run(generation))
        logger.info(f"Subscribed to trades of {self._pool_address} every {self._interval}s")

    def unsubscribe(self) -> None:
        """Stop the feed; nothing is delivered after this returns."""
        self._generation += 1
        self._callback = None
        if self._task is not None:
            self._task.cancel()
            self._task = None
        logger.info(f"Unsubscribed from trades of {self._pool_address}")

    async def _run(self, generation: int) -> None:
        while generation == self._generation:
            await asyncio.sleep(self._interval)
            if generation != self._generation:
                return

            try:
                history = await self._reconciler.refresh(self._pool_address)
            except PipelineError as e:
                logger.warning(f"Trade feed refresh failed for {self._pool_address}: {e}")
                continue

            await self._deliver(history.records, generation)

    async def _deliver(self, records: List[TradeRecord], generation: int) -> None:
        new_records = [r for r in records if r.id not in self._delivered]
        if not new_records or generation != self._generation or self._callback is None:
            return

        self._delivered.update(r.id for r in new_records)
        ordered = sort_trades(new_records, newest_first=False)

        try:
            result = self._callback(ordered)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Trade feed callback error: {e}")
