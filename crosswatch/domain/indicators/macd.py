"""
Moving Average Convergence Divergence.

- MACD line = EMA(fast) - EMA(slow), zero until the slow EMA is seeded
- Signal = EMA(MACD line, signal_period)
- Histogram = MACD line - signal, at every index
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List

from ._validation import validate_period, validate_series
from .ema import calculate_ema


@dataclass
class MACDResult:
    """MACD line, signal line and histogram, each aligned with the input."""
    macd: List[float]
    signal: List[float]
    histogram: List[float]


@dataclass(frozen=True)
class MACDPoint:
    """One index of a MACD result."""
    macd: float
    signal: float
    histogram: float


def calculate_macd(
    prices: Any,
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> MACDResult:
    """
    Calculate MACD line, signal and histogram.

    Returns zeros for all three series when fewer than
    ``max(fast_period, slow_period)`` prices are available.

    Raises:
        IndicatorInputError: On non-numeric input or invalid periods.
    """
    values = validate_series(prices)
    fast_period = validate_period(fast_period, "fast_period")
    slow_period = validate_period(slow_period, "slow_period")
    signal_period = validate_period(signal_period, "signal_period")

    warmup = max(fast_period, slow_period)
    if len(values) < warmup:
        zeros = [0.0] * len(values)
        return MACDResult(macd=zeros, signal=list(zeros), histogram=list(zeros))

    fast = calculate_ema(values, fast_period)
    slow = calculate_ema(values, slow_period)

    macd_line = [
        0.0 if i < warmup - 1 else fast[i] - slow[i]
        for i in range(len(values))
    ]
    signal = calculate_ema(macd_line, signal_period)
    histogram = [m - s for m, s in zip(macd_line, signal)]

    return MACDResult(macd=macd_line, signal=signal, histogram=histogram)


def last_macd_point(result: MACDResult) -> MACDPoint:
    if not result.macd:
        return MACDPoint(0.0, 0.0, 0.0)
    return MACDPoint(result.macd[-1], result.signal[-1], result.histogram[-1])
