"""
ATR (Average True Range).

ATR Formula:
- True Range = max(high - low, |high - prev_close|, |low - prev_close|)
- ATR = simple average of the last ``period`` true ranges
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, List

from ..exceptions import IndicatorInputError
from ._validation import validate_period, validate_series


def _hlc(candle: Any, index: int) -> List[float]:
    if isinstance(candle, Mapping):
        fields = [candle.get("high"), candle.get("low"), candle.get("close")]
    else:
        fields = [getattr(candle, attr, None) for attr in ("high", "low", "close")]
    return validate_series(fields, name=f"candles[{index}]")


def true_ranges(candles: Any) -> List[float]:
    """True range for every candle after the first."""
    if isinstance(candles, (str, bytes)) or not isinstance(candles, Sequence):
        raise IndicatorInputError(
            f"candles must be a sequence, got {type(candles).__name__}"
        )

    rows = [_hlc(candle, i) for i, candle in enumerate(candles)]
    ranges = []
    for i in range(1, len(rows)):
        high, low, _ = rows[i]
        prev_close = rows[i - 1][2]
        ranges.append(max(high - low, abs(high - prev_close), abs(low - prev_close)))
    return ranges


def calculate_atr(candles: Any, period: int = 14) -> float:
    """
    Calculate the current ATR.

    Args:
        candles: Sequence of objects or mappings exposing high/low/close.
        period: Number of true ranges to average.

    Returns:
        ATR, or 0.0 when fewer than ``period + 1`` candles are given.

    Raises:
        IndicatorInputError: On malformed candles or invalid period.
    """
    period = validate_period(period)
    ranges = true_ranges(candles)
    if len(ranges) < period:
        return 0.0
    recent = ranges[-period:]
    return sum(recent) / period
