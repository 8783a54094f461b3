"""
Relative Strength Index with Wilder smoothing.

RSI Formula:
- First average gain/loss = simple mean over the first ``period`` changes
- Then avg = (prev_avg * (period - 1) + current) / period
- RSI = 100 - 100 / (1 + avg_gain / avg_loss)
"""

from __future__ import annotations

from typing import Any, List

from ._validation import validate_period, validate_series

NEUTRAL_RSI = 50.0


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        # A flat window has no direction; only pure gains pin RSI at 100
        return 100.0 if avg_gain > 0 else NEUTRAL_RSI
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def calculate_rsi(prices: Any, period: int = 14) -> List[float]:
    """
    Calculate an RSI series aligned with ``prices``.

    Args:
        prices: Finite numeric sequence, oldest first.
        period: Smoothing window (default 14).

    Returns:
        RSI values in [0, 100], same length as ``prices``. Leading values,
        and every value when fewer than ``period + 1`` prices are given, are
        the neutral 50.

    Raises:
        IndicatorInputError: On non-numeric input or invalid period.
    """
    values = validate_series(prices)
    period = validate_period(period)

    if len(values) < period + 1:
        return [NEUTRAL_RSI] * len(values)

    changes = [values[i] - values[i - 1] for i in range(1, len(values))]

    avg_gain = sum(max(change, 0.0) for change in changes[:period]) / period
    avg_loss = sum(max(-change, 0.0) for change in changes[:period]) / period

    rsi = [NEUTRAL_RSI] * period
    rsi.append(_rsi_value(avg_gain, avg_loss))

    for change in changes[period:]:
        avg_gain = (avg_gain * (period - 1) + max(change, 0.0)) / period
        avg_loss = (avg_loss * (period - 1) + max(-change, 0.0)) / period
        rsi.append(_rsi_value(avg_gain, avg_loss))

    return rsi
