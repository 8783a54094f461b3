"""
Market data events.

Candles are immutable once closed and ordered by ``open_time`` (epoch ms).
A ``CandleTick`` wraps the in-progress or just-closed candle as delivered by
the exchange stream.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True, slots=True)
class Candle:
    """One OHLCV candle."""
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "open_time": self.open_time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candle":
        return cls(
            open_time=int(data["open_time"]),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data["volume"]),
        )


@dataclass(frozen=True, slots=True)
class CandleTick:
    """A streamed candle update; ``closed`` marks the confirmed final print."""
    symbol: str
    interval: str
    candle: Candle
    closed: bool
