"""
Live prediction accuracy tracking.

Every prediction attached to a crossover alert is checked once the backfill
horizon has passed: the realized move is compared with the predicted
direction and per-symbol hit rates are kept in ``model_performance.json``.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional

from ..domain.exceptions import MarketDataError
from ..domain.interfaces.market_data import MarketDataProvider
from ..utils.atomic_io import atomic_write_json
from ..utils.logging_setup import get_logger
from .deferred_tasks import DeferredTaskScheduler

logger = get_logger(__name__)


class PredictionAccuracyTracker:
    """Counts how often predicted directions matched realized moves."""

    def __init__(
        self,
        path: Path,
        provider: MarketDataProvider,
        scheduler: DeferredTaskScheduler,
        horizon_sec: float = 86400.0,
        clock: Callable[[], float] = time.time,
    ):
        self._path = Path(path)
        self._provider = provider
        self._scheduler = scheduler
        self.horizon_sec = horizon_sec
        self._clock = clock
        self._stats: Dict[str, Dict[str, Any]] = {}
        self._lock = Lock()

    def load(self) -> None:
        """Load persisted stats; a missing or corrupt file starts empty."""
        try:
            with open(self._path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable {self._path}: {e}")
            return
        if isinstance(data, dict):
            with self._lock:
                self._stats = {k: v for k, v in data.items() if isinstance(v, dict)}

    def save(self) -> None:
        with self._lock:
            snapshot = {k: dict(v) for k, v in self._stats.items()}
        atomic_write_json(self._path, snapshot)

    def record(self, symbol: str, price: float, predicted_change: float, version: Optional[str] = None) -> None:
        """Schedule an accuracy check for one prediction."""
        self._scheduler.schedule(
            self.horizon_sec,
            lambda: self.check(symbol, price, predicted_change, version),
            name=f"accuracy-{symbol}-{int(self._clock())}",
        )

    async def check(
        self,
        symbol: str,
        price: float,
        predicted_change: float,
        version: Optional[str] = None,
    ) -> Optional[bool]:
        """
        Compare a prediction with the realized move.

        Returns:
            True/False for a hit/miss, None if the price could not be fetched.
        """
        try:
            realized_price = await self._provider.fetch_latest_price(symbol)
        except MarketDataError as e:
            logger.warning(f"{symbol}: accuracy check skipped: {e}")
            return None

        realized_change = (realized_price - price) / price * 100 if price else 0.0
        hit = (predicted_change >= 0) == (realized_change >= 0)

        with self._lock:
            stats = self._stats.setdefault(symbol, {"total": 0, "correct": 0, "accuracy": 0.0})
            stats["total"] += 1
            stats["correct"] += int(hit)
            stats["accuracy"] = stats["correct"] / stats["total"]
            stats["last_version"] = version
            stats["last_updated"] = self._clock()

        logger.info(
            f"{symbol}: prediction {'hit' if hit else 'miss'} "
            f"(predicted {predicted_change:+.2f}%, realized {realized_change:+.2f}%)",
        )
        return hit

    def stats(self, symbol: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            if symbol is not None:
                return dict(self._stats.get(symbol, {}))
            return {k: dict(v) for k, v in self._stats.items()}
