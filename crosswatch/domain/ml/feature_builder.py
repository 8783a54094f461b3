"""Derive a feature point from a candle window and its indicator state."""

from __future__ import annotations

from typing import Dict, Sequence

from ..events.market_events import Candle
from ..indicators.state import IndicatorState
from .feature_point import FeaturePoint


def volume_change(candles: Sequence[Candle]) -> float:
    """Fractional volume change of the last candle vs the one before."""
    if len(candles) < 2 or candles[-2].volume <= 0:
        return 0.0
    return candles[-1].volume / candles[-2].volume - 1


def build_feature_point(
    symbol: str,
    candles: Sequence[Candle],
    state: IndicatorState,
    created_at: int,
) -> FeaturePoint:
    """
    Snapshot the last closed candle and its indicators.

    ``state`` must already be recomputed over ``candles``.
    """
    last = candles[-1]
    ema = state.last_ema if state.last_ema is not None else last.close
    bands = state.last_bollinger
    upper, middle, lower = (bands.upper, bands.middle, bands.lower) if bands else (last.close,) * 3

    return FeaturePoint(
        symbol=symbol,
        timestamp=last.open_time,
        created_at=created_at,
        open=last.open,
        high=last.high,
        low=last.low,
        close=last.close,
        volume=last.volume,
        ema=ema,
        ema_diff=(last.close - ema) / ema * 100 if ema else 0.0,
        rsi=state.last_rsi,
        macd=state.last_macd.macd,
        macd_signal=state.last_macd.signal,
        macd_hist=state.last_macd.histogram,
        bb_upper=upper,
        bb_middle=middle,
        bb_lower=lower,
        bb_width=bands.width if bands else 0.0,
        atr=state.last_atr,
        volume_change=volume_change(candles),
    )


def model_inputs(point: FeaturePoint) -> Dict[str, float]:
    """Raw (un-normalized) model inputs carried by a feature point."""
    return {
        "ema_diff": point.ema_diff,
        "rsi": point.rsi,
        "macd_hist": point.macd_hist,
        "bb_width": point.bb_width,
        "volume": point.volume,
        "volume_change": point.volume_change,
        "atr": point.atr,
    }
