"""
Training feature points.

A ``FeaturePoint`` is created when a candle closes, with no label. Exactly one
label backfill later turns it into a labeled point by producing a new instance
through ``with_label``. Identity is ``(symbol, timestamp)``.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional, Tuple

from ..exceptions import FeaturePointValidationError

DERIVED_FEATURES: Tuple[str, ...] = (
    "ema_diff",
    "rsi",
    "macd_hist",
    "bb_width",
    "atr",
    "volume_change",
)

RAW_FIELDS: Tuple[str, ...] = ("open", "high", "low", "close", "volume")


@dataclass(frozen=True, slots=True)
class FeaturePoint:
    """Candle snapshot plus derived indicators and an optional outcome label."""
    symbol: str
    timestamp: int
    created_at: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    ema: float
    ema_diff: float
    rsi: float
    macd: float
    macd_signal: float
    macd_hist: float
    bb_upper: float
    bb_middle: float
    bb_lower: float
    bb_width: float
    atr: float
    volume_change: float
    future_price_change: Optional[float] = None

    @property
    def key(self) -> Tuple[str, int]:
        return (self.symbol, self.timestamp)

    @property
    def labeled(self) -> bool:
        return self.future_price_change is not None

    @property
    def direction(self) -> Optional[int]:
        """1 if the realized change was >= 0, 0 if negative, None if unlabeled."""
        if self.future_price_change is None:
            return None
        return 1 if self.future_price_change >= 0 else 0

    def validate(self) -> None:
        """
        Check that every derived feature and raw field is a finite number.

        Raises:
            FeaturePointValidationError: On the first offending field.
        """
        if not self.symbol:
            raise FeaturePointValidationError("feature point has no symbol")
        for name in RAW_FIELDS + DERIVED_FEATURES:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise FeaturePointValidationError(
                    f"{self.symbol}@{self.timestamp}: {name} is not numeric ({value!r})"
                )
            if not math.isfinite(value):
                raise FeaturePointValidationError(
                    f"{self.symbol}@{self.timestamp}: {name} is not finite ({value!r})"
                )

    def with_label(self, future_price_change: float) -> "FeaturePoint":
        return replace(self, future_price_change=future_price_change)

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["direction"] = self.direction
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeaturePoint":
        """
        Rebuild a point from its persisted form.

        Raises:
            FeaturePointValidationError: If a field is missing or malformed.
        """
        try:
            kwargs = {f.name: data[f.name] for f in fields(cls) if f.name != "future_price_change"}
            kwargs["timestamp"] = int(kwargs["timestamp"])
            kwargs["created_at"] = int(kwargs["created_at"])
        except (KeyError, TypeError, ValueError) as e:
            raise FeaturePointValidationError(f"malformed feature point record: {e}") from e

        label = data.get("future_price_change")
        point = cls(future_price_change=float(label) if label is not None else None, **kwargs)
        point.validate()
        return point
