"""
Label backfill.

Each recorded feature point gets exactly one scheduled job at
``created_at + horizon``. The job fetches the realized price and writes the
percentage change into that point's label. Transient price lookup failures
are retried a few times; after that the point stays unlabeled.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from ..domain.exceptions import MarketDataError
from ..domain.interfaces.market_data import MarketDataProvider
from ..domain.ml.feature_point import FeaturePoint
from ..infrastructure.stores.training_data_store import TrainingDataStore
from ..utils.logging_setup import get_logger
from .deferred_tasks import DeferredTaskScheduler

logger = get_logger(__name__)


class LabelBackfillService:
    """
    Schedules and performs label backfills.

    Args:
        store: Training data store holding the points.
        provider: Source of the realized price.
        scheduler: Shared deferred job runner.
        horizon_sec: Delay between point creation and labeling (default 24h).
        max_attempts: Price lookups per backfill before giving up.
        retry_delay_sec: Delay between lookups.
    """

    def __init__(
        self,
        store: TrainingDataStore,
        provider: MarketDataProvider,
        scheduler: DeferredTaskScheduler,
        horizon_sec: float = 86400.0,
        max_attempts: int = 3,
        retry_delay_sec: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._provider = provider
        self._scheduler = scheduler
        self.horizon_sec = horizon_sec
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_sec = retry_delay_sec
        self._clock = clock
        self.labeled = 0
        self.abandoned = 0

    def due_in(self, point: FeaturePoint) -> float:
        return point.created_at / 1000 + self.horizon_sec - self._clock()

    def schedule(self, point: FeaturePoint) -> asyncio.Task:
        return self._scheduler.schedule(
            self.due_in(point),
            lambda: self.resolve(point),
            name=f"label-{point.symbol}-{point.timestamp}",
        )

    async def resolve(self, point: FeaturePoint) -> bool:
        """Fetch the realized price and label the point. Returns True if written."""
        price: Optional[float] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                price = await self._provider.fetch_latest_price(point.symbol)
                break
            except MarketDataError as e:
                logger.warning(
                    f"Price lookup for {point.symbol} label failed (attempt {attempt}/{self.max_attempts}): {e}"
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay_sec)

        if price is None:
            self.abandoned += 1
            logger.error(f"Giving up on label for {point.symbol}@{point.timestamp}")
            return False

        written = self._store.backfill_label(point.symbol, point.timestamp, price)
        if written:
            self.labeled += 1
        return written

    def reschedule_pending(self) -> int:
        """
        Schedule jobs for buffered unlabeled points after a restart.

        Points whose horizon already passed stay unlabeled, since the price
        at the horizon is no longer observable.

        Returns:
            Number of jobs scheduled.
        """
        scheduled = 0
        overdue = 0
        for point in self._store.pending_labels():
            if self.due_in(point) < 0:
                overdue += 1
                continue
            self.schedule(point)
            scheduled += 1
        if scheduled or overdue:
            logger.info(f"Rescheduled {scheduled} label backfill(s), {overdue} overdue left unlabeled")
        return scheduled
