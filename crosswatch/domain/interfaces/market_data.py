"""
Market data port.

The core depends only on:
- listing symbols above a 24h volume threshold
- fetching closed historical candles
- opening a per-symbol candle stream
- looking up the latest price
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, List, Protocol, runtime_checkable

from ..events.market_events import Candle, CandleTick


@dataclass(frozen=True)
class EligibleSymbol:
    """24h ticker summary for a symbol that passed the volume filter."""
    symbol: str
    volume: float
    price: float
    change_pct: float


@runtime_checkable
class CandleStream(Protocol):
    """
    A live candle feed for one symbol and interval.

    ``connect`` establishes the transport; iteration yields ticks until the
    transport closes or fails. ``is_open`` reports whether the transport is
    currently usable.
    """

    @property
    def is_open(self) -> bool:
        ...

    async def connect(self) -> None:
        ...

    def __aiter__(self) -> AsyncIterator[CandleTick]:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class MarketDataProvider(Protocol):
    """Exchange market data needed by sessions, supervisor and label backfill."""

    async def list_eligible_symbols(self, min_volume: float) -> List[EligibleSymbol]:
        """
        Symbols whose 24h quote volume exceeds ``min_volume``.

        Raises:
            MarketDataError: If the exchange cannot be reached.
        """
        ...

    async def fetch_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        """
        Most recent closed candles, oldest first.

        Raises:
            MarketDataError: If the exchange cannot be reached.
        """
        ...

    def open_candle_stream(self, symbol: str, interval: str) -> CandleStream:
        """Create (not yet connected) stream for one symbol."""
        ...

    async def fetch_latest_price(self, symbol: str) -> float:
        """
        Raises:
            MarketDataError: If the exchange cannot be reached.
        """
        ...
