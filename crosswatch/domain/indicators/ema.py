"""
Exponential Moving Average.

EMA Formula:
- k = 2 / (period + 1)
- Seed = simple average of the first ``period`` prices
- EMA[i] = (price[i] - EMA[i-1]) * k + EMA[i-1]

Indices before the seed carry the first price, so the output always has the
same length as the input and early values never produce a spurious crossover.
"""

from __future__ import annotations

from typing import Any, List

from ._validation import validate_period, validate_series


def smoothing_factor(period: int) -> float:
    """EMA smoothing factor for a window length."""
    return 2.0 / (period + 1)


def calculate_ema(prices: Any, period: int) -> List[float]:
    """
    Calculate an EMA series aligned with ``prices``.

    Args:
        prices: Finite numeric sequence, oldest first.
        period: Window length.

    Returns:
        EMA values, same length as ``prices``. A series shorter than ``period``
        yields the first price repeated.

    Raises:
        IndicatorInputError: On non-numeric input or invalid period.
    """
    values = validate_series(prices)
    period = validate_period(period)

    if not values:
        return []
    if len(values) < period:
        return [values[0]] * len(values)

    k = smoothing_factor(period)
    seed = sum(values[:period]) / period

    ema = [values[0]] * (period - 1)
    ema.append(seed)

    prev = seed
    for price in values[period:]:
        prev = (price - prev) * k + prev
        ema.append(prev)

    return ema


def next_ema(prev_ema: float, price: float, period: int) -> float:
    """Advance an EMA by one price without touching history."""
    return (price - prev_ema) * smoothing_factor(period) + prev_ema
