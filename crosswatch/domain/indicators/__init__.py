"""Technical indicators: pure functions over price/candle series."""

from .atr import calculate_atr, true_ranges
from .bollinger import BollingerBands, calculate_bollinger
from .ema import calculate_ema, next_ema, smoothing_factor
from .macd import MACDPoint, MACDResult, calculate_macd
from .rsi import NEUTRAL_RSI, calculate_rsi
from .state import BandPoint, IndicatorState

__all__ = [
    "calculate_atr",
    "true_ranges",
    "BollingerBands",
    "calculate_bollinger",
    "calculate_ema",
    "next_ema",
    "smoothing_factor",
    "MACDPoint",
    "MACDResult",
    "calculate_macd",
    "NEUTRAL_RSI",
    "calculate_rsi",
    "BandPoint",
    "IndicatorState",
]
