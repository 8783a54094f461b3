"""
Binance USDT-M futures market data adapter.

Implements MarketDataProvider over aiohttp:
- GET /fapi/v1/ticker/24hr   → volume-filtered symbol universe
- GET /fapi/v1/klines        → historical candles
- GET /fapi/v1/ticker/price  → latest price
- WS  /ws/{symbol}@kline_{interval} → live candle ticks

REST calls retry 418/429/5xx and connection errors with exponential backoff
and jitter, then raise MarketDataError.
"""

from __future__ import annotations

import asyncio
import json
import random
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

from ...domain.events.market_events import Candle, CandleTick
from ...domain.exceptions import MarketDataError
from ...domain.interfaces.market_data import EligibleSymbol
from ...utils.logging_setup import get_logger
from ...utils.timezone import now_ms

logger = get_logger(__name__)

DEFAULT_REST_BASE = "https://fapi.binance.com"
DEFAULT_WS_BASE = "wss://fstream.binance.com/ws"


def parse_kline_message(data: Any) -> Optional[CandleTick]:
    """
    Parse a kline stream payload.

    Returns:
        CandleTick, or None for non-kline or malformed payloads.
    """
    if not isinstance(data, dict) or data.get("e") != "kline":
        return None
    k = data.get("k")
    if not isinstance(k, dict):
        return None
    try:
        candle = Candle(
            open_time=int(k["t"]),
            open=float(k["o"]),
            high=float(k["h"]),
            low=float(k["l"]),
            close=float(k["c"]),
            volume=float(k["v"]),
        )
        return CandleTick(
            symbol=str(data.get("s") or k.get("s", "")).upper(),
            interval=str(k.get("i", "")),
            candle=candle,
            closed=bool(k["x"]),
        )
    except (KeyError, TypeError, ValueError):
        return None


def parse_kline_row(row: Any) -> Candle:
    """Parse one REST kline row: [openTime, o, h, l, c, v, closeTime, ...]."""
    return Candle(
        open_time=int(row[0]),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
    )


class BinanceCandleStream:
    """One symbol's kline WebSocket."""

    def __init__(self, session: aiohttp.ClientSession, url: str, symbol: str, heartbeat: float = 20.0):
        self._session = session
        self._url = url
        self._symbol = symbol
        self._heartbeat = heartbeat
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        try:
            self._ws = await self._session.ws_connect(self._url, heartbeat=self._heartbeat)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise MarketDataError(f"{self._symbol}: websocket connect failed: {e}") from e
        logger.info(f"{self._symbol}: websocket connected")

    def __aiter__(self) -> AsyncIterator[CandleTick]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[CandleTick]:
        if self._ws is None:
            raise MarketDataError(f"{self._symbol}: stream not connected")

        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    payload = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning(f"{self._symbol}: undecodable websocket frame skipped")
                    continue
                tick = parse_kline_message(payload)
                if tick is None:
                    logger.debug(f"{self._symbol}: ignoring non-kline message")
                    continue
                yield tick
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise MarketDataError(f"{self._symbol}: websocket error: {self._ws.exception()}")
            elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                break

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()


class BinanceFuturesMarketData:
    """
    MarketDataProvider for Binance USDT-M futures.

    Args:
        rest_base_url: REST root, e.g. https://fapi.binance.com
        ws_base_url: Raw stream root, e.g. wss://fstream.binance.com/ws
        request_timeout_sec: Per-request timeout.
        max_retries: Attempts per REST call before giving up.
        quote_asset: Only symbols with this suffix are eligible.
    """

    def __init__(
        self,
        rest_base_url: str = DEFAULT_REST_BASE,
        ws_base_url: str = DEFAULT_WS_BASE,
        request_timeout_sec: float = 10.0,
        max_retries: int = 3,
        quote_asset: str = "USDT",
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.rest_base_url = rest_base_url.rstrip("/")
        self.ws_base_url = ws_base_url.rstrip("/")
        self.request_timeout_sec = request_timeout_sec
        self.max_retries = max(1, max_retries)
        self.quote_asset = quote_asset
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout_sec)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.rest_base_url}{path}"
        base_delay = 1.0
        last_error: Optional[str] = None

        for attempt in range(self.max_retries):
            try:
                async with self._get_session().get(url, params=params) as resp:
                    if resp.status in (418, 429):
                        retry_after = resp.headers.get("Retry-After")
                        try:
                            delay = float(retry_after) if retry_after else base_delay * (2 ** attempt)
                        except ValueError:
                            delay = base_delay * (2 ** attempt)
                        last_error = f"rate limited ({resp.status})"
                        logger.warning(f"Rate limit {resp.status} on {path}, sleeping {delay:.1f}s")
                        await asyncio.sleep(delay + random.uniform(0.0, 1.0))
                        continue
                    if resp.status >= 500:
                        last_error = f"server error {resp.status}"
                        delay = base_delay * (2 ** attempt) + random.uniform(0.0, 1.0)
                        logger.warning(f"Server error {resp.status} on {path}, retry in {delay:.1f}s")
                        await asyncio.sleep(delay)
                        continue
                    resp.raise_for_status()
                    return await resp.json()
            except asyncio.CancelledError:
                raise
            except aiohttp.ClientResponseError as e:
                # 4xx other than rate limiting will not improve on retry
                raise MarketDataError(f"GET {path} failed: {e.status} {e.message}") from e
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = str(e) or type(e).__name__
                delay = base_delay * (2 ** attempt) + random.uniform(0.0, 1.0)
                logger.warning(f"Error on GET {path}: {last_error}, retry in {delay:.1f}s")
                await asyncio.sleep(delay)

        raise MarketDataError(f"GET {path} failed after {self.max_retries} attempts: {last_error}")

    async def list_eligible_symbols(self, min_volume: float) -> List[EligibleSymbol]:
        data = await self._get("/fapi/v1/ticker/24hr")
        if not isinstance(data, list):
            raise MarketDataError("unexpected 24hr ticker payload")

        eligible: List[EligibleSymbol] = []
        for row in data:
            try:
                symbol = str(row["symbol"])
                volume = float(row["quoteVolume"])
                if not symbol.endswith(self.quote_asset) or volume <= min_volume:
                    continue
                eligible.append(EligibleSymbol(
                    symbol=symbol,
                    volume=volume,
                    price=float(row["lastPrice"]),
                    change_pct=float(row["priceChangePercent"]),
                ))
            except (KeyError, TypeError, ValueError):
                logger.debug(f"Skipping malformed ticker row: {row!r}")
        eligible.sort(key=lambda s: s.volume, reverse=True)
        return eligible

    async def fetch_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        data = await self._get(
            "/fapi/v1/klines",
            params={"symbol": symbol, "interval": interval, "limit": limit},
        )
        if not isinstance(data, list):
            raise MarketDataError(f"{symbol}: unexpected klines payload")

        now = now_ms()
        candles: List[Candle] = []
        for row in data:
            try:
                if int(row[6]) > now:
                    continue  # still open
                candles.append(parse_kline_row(row))
            except (IndexError, TypeError, ValueError):
                logger.warning(f"{symbol}: skipping malformed kline row")
        return candles

    def open_candle_stream(self, symbol: str, interval: str) -> BinanceCandleStream:
        url = f"{self.ws_base_url}/{symbol.lower()}@kline_{interval}"
        return BinanceCandleStream(self._get_session(), url, symbol)

    async def fetch_latest_price(self, symbol: str) -> float:
        data = await self._get("/fapi/v1/ticker/price", params={"symbol": symbol})
        try:
            return float(data["price"])
        except (KeyError, TypeError, ValueError) as e:
            raise MarketDataError(f"{symbol}: unexpected price payload") from e
