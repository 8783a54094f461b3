"""
Bollinger Bands over a trailing window.

- Middle = simple moving average of the window
- Upper/Lower = middle +/- multiplier * population standard deviation

Indices without a full window use +/-10% of the first price.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List

import numpy as np

from ._validation import validate_multiplier, validate_period, validate_series

FALLBACK_BAND_PCT = 0.10


@dataclass
class BollingerBands:
    """Band series aligned with the input prices."""
    upper: List[float]
    middle: List[float]
    lower: List[float]

    def width_at(self, index: int) -> float:
        """(upper - lower) / middle, or 0 when the middle band is 0."""
        middle = self.middle[index]
        if middle == 0:
            return 0.0
        return (self.upper[index] - self.lower[index]) / middle


def calculate_bollinger(prices: Any, period: int = 20, multiplier: float = 2.0) -> BollingerBands:
    """
    Calculate Bollinger Bands.

    Raises:
        IndicatorInputError: On non-numeric input, invalid period or multiplier.
    """
    values = validate_series(prices)
    period = validate_period(period)
    multiplier = validate_multiplier(multiplier)

    if not values:
        return BollingerBands(upper=[], middle=[], lower=[])

    first = values[0]
    fallback_upper = first * (1 + FALLBACK_BAND_PCT)
    fallback_lower = first * (1 - FALLBACK_BAND_PCT)

    warmup = min(period - 1, len(values))
    upper = [fallback_upper] * warmup
    middle = [first] * warmup
    lower = [fallback_lower] * warmup

    arr = np.asarray(values, dtype=float)
    for end in range(period, len(values) + 1):
        window = arr[end - period:end]
        mean = float(window.mean())
        std = float(window.std())  # population (ddof=0)
        upper.append(mean + multiplier * std)
        middle.append(mean)
        lower.append(mean - multiplier * std)

    return BollingerBands(upper=upper, middle=middle, lower=lower)
