"""Typed market and alert events."""

from .market_events import Candle, CandleTick
from .alert_events import AlertEvent, EventKind, CrossoverDirection

__all__ = [
    "Candle",
    "CandleTick",
    "AlertEvent",
    "EventKind",
    "CrossoverDirection",
]
