"""Pytest configuration and fixtures."""

import asyncio
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import pytest

from crosswatch.domain.events.alert_events import AlertEvent
from crosswatch.domain.events.market_events import Candle, CandleTick
from crosswatch.domain.exceptions import MarketDataError
from crosswatch.domain.interfaces.market_data import EligibleSymbol
from crosswatch.domain.ml.feature_point import FeaturePoint

CANDLE_MS = 15 * 60 * 1000
BASE_OPEN_TIME = 1_760_000_000_000


class FakeCandleStream:
    """In-memory candle stream fed through ``push``."""

    def __init__(self, symbol: str, fail_connect: bool = False):
        self.symbol = symbol
        self.fail_connect = fail_connect
        self.connected = False
        self.closed = False
        self._queue: "asyncio.Queue[Optional[CandleTick]]" = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self.connected and not self.closed

    async def connect(self) -> None:
        if self.fail_connect:
            raise MarketDataError(f"{self.symbol}: refused")
        self.connected = True

    def push(self, tick: CandleTick) -> None:
        self._queue.put_nowait(tick)

    def end(self) -> None:
        self._queue.put_nowait(None)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            tick = await self._queue.get()
            if tick is None:
                return
            yield tick

    async def close(self) -> None:
        self.closed = True


class FakeMarketData:
    """MarketDataProvider double with scripted responses."""

    def __init__(self) -> None:
        self.eligible: List[EligibleSymbol] = []
        self.candles: Dict[str, List[Candle]] = {}
        self.prices: Dict[str, float] = {}
        self.fail_listing = False
        self.fail_connect = False
        self.price_failures = 0
        self.streams: Dict[str, List[FakeCandleStream]] = {}
        self.fetch_calls: List[tuple] = []

    def set_eligible(self, *symbols: str, volume: float = 2e8) -> None:
        self.eligible = [EligibleSymbol(s, volume, 100.0, 1.5) for s in symbols]

    async def list_eligible_symbols(self, min_volume: float) -> List[EligibleSymbol]:
        if self.fail_listing:
            raise MarketDataError("exchange unreachable")
        return [e for e in self.eligible if e.volume > min_volume]

    async def fetch_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        self.fetch_calls.append((symbol, interval, limit))
        return list(self.candles.get(symbol, []))[-limit:]

    def open_candle_stream(self, symbol: str, interval: str) -> FakeCandleStream:
        stream = FakeCandleStream(symbol, fail_connect=self.fail_connect)
        self.streams.setdefault(symbol, []).append(stream)
        return stream

    def latest_stream(self, symbol: str) -> FakeCandleStream:
        return self.streams[symbol][-1]

    async def fetch_latest_price(self, symbol: str) -> float:
        if self.price_failures > 0:
            self.price_failures -= 1
            raise MarketDataError("price lookup failed")
        if symbol not in self.prices:
            raise MarketDataError(f"no price for {symbol}")
        return self.prices[symbol]


class RecordingAlertSink:
    """AlertSink double that keeps every event."""

    def __init__(self) -> None:
        self.events: List[AlertEvent] = []

    async def emit(self, event: AlertEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind) -> List[AlertEvent]:
        return [e for e in self.events if e.kind is kind]


def make_candles(
    closes: Sequence[float],
    start: int = BASE_OPEN_TIME,
    volume: float = 1000.0,
) -> List[Candle]:
    """One candle per close, spaced one 15m interval apart."""
    return [
        Candle(
            open_time=start + i * CANDLE_MS,
            open=close,
            high=close * 1.001,
            low=close * 0.999,
            close=close,
            volume=volume,
        )
        for i, close in enumerate(closes)
    ]


def make_points(
    n: int,
    symbol: str = "BTCUSDT",
    start: int = BASE_OPEN_TIME,
    labeled: bool = True,
    seed: int = 7,
) -> List[FeaturePoint]:
    """
    Synthetic feature points whose label follows ``ema_diff``.

    Feature values stay inside the normalization ranges.
    """
    rng = np.random.default_rng(seed)
    points = []
    for i in range(n):
        ema_diff = float(rng.uniform(-3, 3))
        close = 100.0 + float(rng.normal(0, 1))
        label = ema_diff * 0.8 + float(rng.normal(0, 0.3)) if labeled else None
        points.append(FeaturePoint(
            symbol=symbol,
            timestamp=start + i * CANDLE_MS,
            created_at=start + i * CANDLE_MS,
            open=close,
            high=close * 1.01,
            low=close * 0.99,
            close=close,
            volume=float(rng.uniform(1e5, 1e6)),
            ema=close / (1 + ema_diff / 100),
            ema_diff=ema_diff,
            rsi=float(rng.uniform(20, 80)),
            macd=float(rng.normal(0, 0.2)),
            macd_signal=float(rng.normal(0, 0.2)),
            macd_hist=float(rng.normal(0, 0.2)),
            bb_upper=close * 1.02,
            bb_middle=close,
            bb_lower=close * 0.98,
            bb_width=0.04,
            atr=float(rng.uniform(0.1, 0.9)),
            volume_change=float(rng.uniform(-0.5, 0.5)),
            future_price_change=label,
        ))
    return points


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    """Poll a predicate on the event loop until it holds (or fail)."""
    return _wait_until


@pytest.fixture
def candle_factory() -> Callable[..., List[Candle]]:
    """Build closed candles from a list of closes."""
    return make_candles


@pytest.fixture
def point_factory() -> Callable[..., List[FeaturePoint]]:
    """Build synthetic feature points."""
    return make_points


@pytest.fixture
def fake_provider() -> FakeMarketData:
    """Scripted market data provider."""
    return FakeMarketData()


@pytest.fixture
def alert_sink() -> RecordingAlertSink:
    """Alert sink that records events."""
    return RecordingAlertSink()
