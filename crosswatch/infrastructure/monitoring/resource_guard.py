"""
Process memory guard for training batches.

Training and hyperparameter trials check ``has_headroom()`` before starting.
Above the high-water mark the caller skips the rest of its batch; the skip is
logged as a warning, not counted as a failure.
"""

from __future__ import annotations

import gc
from typing import Callable, Optional

import psutil

from ...utils.logging_setup import get_logger

logger = get_logger(__name__)


def process_rss_mb() -> float:
    """Resident set size of this process in MB."""
    return psutil.Process().memory_info().rss / 1024 / 1024


class MemoryGuard:
    """
    RSS-based high-water-mark check.

    Args:
        high_water_mb: Above this, ``has_headroom()`` returns False.
        warning_mb: Above this, a warning is logged but work continues.
        sampler: RSS source in MB (injectable for tests).
    """

    def __init__(
        self,
        high_water_mb: float = 900.0,
        warning_mb: Optional[float] = 600.0,
        sampler: Callable[[], float] = process_rss_mb,
    ):
        self.high_water_mb = high_water_mb
        self.warning_mb = warning_mb
        self._sampler = sampler
        self.peak_mb = 0.0
        self.trips = 0

    def usage_mb(self) -> float:
        usage = self._sampler()
        self.peak_mb = max(self.peak_mb, usage)
        return usage

    def has_headroom(self) -> bool:
        usage = self.usage_mb()
        if usage > self.high_water_mb:
            # One collection pass before giving up on the batch
            gc.collect()
            usage = self.usage_mb()
            if usage > self.high_water_mb:
                self.trips += 1
                logger.warning(
                    f"Memory {usage:.0f}MB above high-water mark {self.high_water_mb:.0f}MB",
                    extra={"data": {"usage_mb": usage, "high_water_mb": self.high_water_mb}},
                )
                return False
        if self.warning_mb is not None and usage > self.warning_mb:
            logger.warning(f"Memory {usage:.0f}MB above warning level {self.warning_mb:.0f}MB")
        return True

    def snapshot(self) -> dict:
        return {
            "usage_mb": self.usage_mb(),
            "peak_mb": self.peak_mb,
            "high_water_mb": self.high_water_mb,
            "trips": self.trips,
        }
