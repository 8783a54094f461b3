"""
Per-symbol indicator snapshot.

An ``IndicatorState`` is owned by exactly one symbol session. It is rebuilt
from the candle window on every confirmed close and read (never mutated) on
intra-candle ticks.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional, Sequence

from ..events.market_events import Candle
from .atr import calculate_atr
from .bollinger import calculate_bollinger
from .ema import calculate_ema, next_ema
from .macd import MACDPoint, calculate_macd, last_macd_point
from .rsi import NEUTRAL_RSI, calculate_rsi


@dataclass(frozen=True)
class BandPoint:
    upper: float
    middle: float
    lower: float

    @property
    def width(self) -> float:
        if self.middle == 0:
            return 0.0
        return (self.upper - self.lower) / self.middle


@dataclass
class IndicatorState:
    """
    Trailing indicator values for one symbol.

    Attributes:
        ema_period: Crossover EMA window.
        retention: Maximum number of EMA history points kept.
    """

    ema_period: int
    retention: int
    rsi_period: int = 14
    atr_period: int = 14
    bollinger_period: int = 20
    ema_history: Deque[float] = field(init=False)
    last_close: Optional[float] = None
    prev_close: Optional[float] = None
    last_rsi: float = NEUTRAL_RSI
    last_macd: MACDPoint = field(default_factory=lambda: MACDPoint(0.0, 0.0, 0.0))
    last_bollinger: Optional[BandPoint] = None
    last_atr: float = 0.0

    def __post_init__(self) -> None:
        self.ema_history = deque(maxlen=self.retention)

    @property
    def seeded(self) -> bool:
        return bool(self.ema_history)

    @property
    def last_ema(self) -> Optional[float]:
        return self.ema_history[-1] if self.ema_history else None

    @property
    def prev_ema(self) -> Optional[float]:
        return self.ema_history[-2] if len(self.ema_history) >= 2 else None

    def recompute(self, candles: Sequence[Candle]) -> None:
        """Rebuild every trailing value from the retained candle window."""
        if not candles:
            return

        closes = [c.close for c in candles]
        ema = calculate_ema(closes, self.ema_period)
        self.ema_history.clear()
        self.ema_history.extend(ema[-self.retention:])

        self.last_close = closes[-1]
        self.prev_close = closes[-2] if len(closes) >= 2 else None
        self.last_rsi = calculate_rsi(closes, self.rsi_period)[-1]
        self.last_macd = last_macd_point(calculate_macd(closes))

        bands = calculate_bollinger(closes, self.bollinger_period)
        self.last_bollinger = BandPoint(bands.upper[-1], bands.middle[-1], bands.lower[-1])
        self.last_atr = calculate_atr(list(candles), self.atr_period)

    def provisional_ema(self, price: float) -> Optional[float]:
        """EMA as it would read if the open candle closed at ``price``."""
        if self.last_ema is None:
            return None
        return next_ema(self.last_ema, price, self.ema_period)

    def clear(self) -> None:
        self.ema_history.clear()
        self.last_close = None
        self.prev_close = None
        self.last_rsi = NEUTRAL_RSI
        self.last_macd = MACDPoint(0.0, 0.0, 0.0)
        self.last_bollinger = None
        self.last_atr = 0.0
