"""
Symbol stream session.

One session per tracked symbol. It owns the symbol's candle window,
IndicatorState and AlertState, and runs two tasks:

- transport: connects the candle stream, backfills history on first connect,
  pushes every tick into the session inbox, reconnects after a fixed delay
- actor: drains the inbox strictly in order and is the only code that touches
  the owned state, so nothing inside a session needs a lock

State machine:
    DISCONNECTED → CONNECTING → LIVE ⇄ RECONNECTING → CLOSED

Outputs (alerts, feature points) are pushed onto a shared SessionOutbox.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Protocol, Union

from ..domain.events.alert_events import AlertEvent, EventKind
from ..domain.events.market_events import Candle, CandleTick
from ..domain.exceptions import MarketDataError, ValidationError
from ..domain.indicators.state import IndicatorState
from ..domain.interfaces.market_data import CandleStream, MarketDataProvider
from ..domain.ml.feature_builder import build_feature_point, model_inputs
from ..domain.ml.feature_point import FeaturePoint
from ..domain.services.crossover_policy import AlertState, CrossoverPolicy, side_of
from ..utils.logging_setup import get_logger

logger = get_logger(__name__)


class SessionState(Enum):
    """Lifecycle of a symbol session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    LIVE = "live"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class Predictor(Protocol):
    """Anything that can attach a prediction to a crossover alert."""

    async def predict(self, symbol: str, features: Mapping[str, Any]) -> Optional[Any]:
        ...


@dataclass
class SessionOutbox:
    """Outbound channels shared by all sessions."""
    alerts: "asyncio.Queue[AlertEvent]" = field(default_factory=asyncio.Queue)
    feature_points: "asyncio.Queue[FeaturePoint]" = field(default_factory=asyncio.Queue)


@dataclass(frozen=True)
class _Backfill:
    candles: List[Candle]


InboxItem = Union[CandleTick, _Backfill]


class SymbolStreamSession:
    """
    Streaming state machine for one symbol.

    Args:
        symbol: Exchange symbol, e.g. "BTCUSDT".
        provider: Market data port.
        policy: Crossover/alert policy.
        outbox: Shared outbound channels.
        interval: Candle interval, e.g. "15m".
        indicator_period: EMA period used for crossovers.
        backfill_buffer: Extra candles fetched beyond the period on first connect.
        reconnect_delay_sec: Fixed delay before each reconnect attempt.
        min_feature_candles: Candles required before feature points are produced.
        ml_enabled: Produce feature points and request predictions.
        predictor: Optional prediction source for alert payloads.
        clock: Wall-clock seconds source.
    """

    def __init__(
        self,
        symbol: str,
        provider: MarketDataProvider,
        policy: CrossoverPolicy,
        outbox: SessionOutbox,
        interval: str = "15m",
        indicator_period: int = 200,
        backfill_buffer: int = 100,
        reconnect_delay_sec: float = 5.0,
        min_feature_candles: int = 30,
        ml_enabled: bool = True,
        predictor: Optional[Predictor] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.symbol = symbol
        self.interval = interval
        self.indicator_period = indicator_period
        self.backfill_limit = indicator_period + backfill_buffer
        self.retention = 2 * indicator_period
        self.reconnect_delay_sec = reconnect_delay_sec
        self.min_feature_candles = min_feature_candles
        self.ml_enabled = ml_enabled

        self._provider = provider
        self._policy = policy
        self._outbox = outbox
        self._predictor = predictor
        self._clock = clock

        self._state = SessionState.DISCONNECTED
        self._candles: Deque[Candle] = deque(maxlen=self.retention)
        self.indicators = IndicatorState(ema_period=indicator_period, retention=self.retention)
        self.alert_state = AlertState()

        self._inbox: "asyncio.Queue[InboxItem]" = asyncio.Queue()
        self._stream: Optional[CandleStream] = None
        self._transport_task: Optional[asyncio.Task] = None
        self._actor_task: Optional[asyncio.Task] = None
        self._backfill_requested = False

        self.reconnects = 0
        self.provisional_crossovers = 0
        self.closed_candles = 0
        self.alerts_emitted = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def candles(self) -> List[Candle]:
        return list(self._candles)

    @property
    def is_transport_open(self) -> bool:
        return self._stream is not None and self._stream.is_open

    @property
    def is_closed(self) -> bool:
        return self._state is SessionState.CLOSED

    def snapshot(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "state": self._state.value,
            "transport_open": self.is_transport_open,
            "candles": len(self._candles),
            "last_ema": self.indicators.last_ema,
            "side": self.alert_state.side.value if self.alert_state.side else None,
            "reconnects": self.reconnects,
            "closed_candles": self.closed_candles,
            "provisional_crossovers": self.provisional_crossovers,
            "alerts_emitted": self.alerts_emitted,
        }

    def _set_state(self, new_state: SessionState) -> None:
        if self._state is SessionState.CLOSED or new_state is self._state:
            return
        logger.debug(f"{self.symbol}: {self._state.value} -> {new_state.value}")
        self._state = new_state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the actor and transport tasks."""
        if self.is_closed:
            raise RuntimeError(f"{self.symbol}: session already closed")
        if self._actor_task is None:
            self._actor_task = asyncio.create_task(self._actor_loop(), name=f"session-actor-{self.symbol}")
        if self._transport_task is None or self._transport_task.done():
            self._transport_task = asyncio.create_task(
                self._transport_loop(), name=f"session-transport-{self.symbol}"
            )
        logger.info(f"{self.symbol}: session started")

    async def restart(self) -> None:
        """Re-establish the transport only; indicator and alert state are kept."""
        if self.is_closed:
            return
        await self._cancel_transport()
        self.reconnects += 1
        self._set_state(SessionState.RECONNECTING)
        self._transport_task = asyncio.create_task(
            self._transport_loop(), name=f"session-transport-{self.symbol}"
        )
        logger.info(f"{self.symbol}: transport restarted")

    async def close(self) -> None:
        """Untrack: stop both tasks and release all owned state."""
        if self.is_closed:
            return
        self._state = SessionState.CLOSED
        await self._cancel_transport()
        if self._actor_task is not None:
            self._actor_task.cancel()
            try:
                await self._actor_task
            except asyncio.CancelledError:
                pass
            self._actor_task = None

        self._candles.clear()
        self.indicators.clear()
        self.alert_state = AlertState()
        while not self._inbox.empty():
            self._inbox.get_nowait()
            self._inbox.task_done()
        logger.info(f"{self.symbol}: session closed")

    async def _cancel_transport(self) -> None:
        task = self._transport_task
        self._transport_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._stream is not None:
            await self._close_stream(self._stream)
            self._stream = None

    async def _close_stream(self, stream: CandleStream) -> None:
        try:
            await stream.close()
        except (MarketDataError, OSError) as e:
            logger.debug(f"{self.symbol}: error closing stream: {e}")

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _transport_loop(self) -> None:
        if self._state is SessionState.DISCONNECTED:
            self._set_state(SessionState.CONNECTING)

        while not self.is_closed:
            stream = self._provider.open_candle_stream(self.symbol, self.interval)
            self._stream = stream
            try:
                await stream.connect()
                if not self._backfill_requested:
                    candles = await self._provider.fetch_candles(
                        self.symbol, self.interval, self.backfill_limit
                    )
                    await self._inbox.put(_Backfill(candles))
                    self._backfill_requested = True
                self._set_state(SessionState.LIVE)

                async for tick in stream:
                    await self._inbox.put(tick)

                if not self.is_closed:
                    logger.warning(f"{self.symbol}: stream ended unexpectedly")
            except asyncio.CancelledError:
                raise
            except MarketDataError as e:
                logger.warning(f"{self.symbol}: transport error: {e}")
            except Exception as e:
                logger.error(f"{self.symbol}: unexpected transport failure: {e}", exc_info=True)
            finally:
                if self._stream is stream:
                    self._stream = None
                await self._close_stream(stream)

            if self.is_closed:
                break
            self._set_state(SessionState.RECONNECTING)
            self.reconnects += 1
            logger.info(f"{self.symbol}: reconnecting in {self.reconnect_delay_sec:.0f}s")
            await asyncio.sleep(self.reconnect_delay_sec)

    # ------------------------------------------------------------------
    # Actor
    # ------------------------------------------------------------------

    async def _actor_loop(self) -> None:
        while True:
            item = await self._inbox.get()
            try:
                await self.handle(item)
            except ValidationError as e:
                logger.warning(f"{self.symbol}: skipped malformed input: {e}")
            except Exception as e:
                logger.error(f"{self.symbol}: failed to process event: {e}", exc_info=True)
            finally:
                self._inbox.task_done()

    async def join(self) -> None:
        """Wait until every queued inbound event has been processed."""
        await self._inbox.join()

    async def handle(self, item: InboxItem) -> None:
        """Process one inbound event. Only the actor task calls this."""
        if isinstance(item, _Backfill):
            self._apply_backfill(item.candles)
        elif item.closed:
            await self._on_close(item.candle)
        else:
            self._on_tick(item.candle)

    def _apply_backfill(self, candles: List[Candle]) -> None:
        ordered = sorted(candles, key=lambda c: c.open_time)
        self._candles.clear()
        self._candles.extend(ordered)
        self.indicators.recompute(list(self._candles))
        logger.info(
            f"{self.symbol}: backfilled {len(ordered)} candles",
            extra={"data": {"symbol": self.symbol, "candles": len(ordered), "ema": self.indicators.last_ema}},
        )

    def _on_tick(self, candle: Candle) -> None:
        """Provisional crossover check. Never alerts, never records training data."""
        last_close = self.indicators.last_close
        last_ema = self.indicators.last_ema
        provisional = self.indicators.provisional_ema(candle.close)
        if last_close is None or last_ema is None or provisional is None:
            return
        if side_of(last_close, last_ema) != side_of(candle.close, provisional):
            self.provisional_crossovers += 1
            logger.debug(
                f"{self.symbol}: provisional crossover at {candle.close} (ema {provisional:.6f})"
            )

    async def _on_close(self, candle: Candle) -> None:
        if self._candles and candle.open_time <= self._candles[-1].open_time:
            logger.debug(f"{self.symbol}: ignoring stale close for {candle.open_time}")
            return

        self._candles.append(candle)
        self.closed_candles += 1
        window = list(self._candles)
        self.indicators.recompute(window)

        point = None
        if len(window) >= 2:
            point = build_feature_point(self.symbol, window, self.indicators, int(self._clock() * 1000))
            if self.ml_enabled and len(window) >= self.min_feature_candles:
                await self._outbox.feature_points.put(point)

        prev_close = self.indicators.prev_close
        prev_ema = self.indicators.prev_ema
        curr_ema = self.indicators.last_ema
        if prev_close is None or prev_ema is None or curr_ema is None:
            return

        decision = self._policy.evaluate(
            self.alert_state,
            prev_price=prev_close,
            prev_indicator=prev_ema,
            curr_price=candle.close,
            curr_indicator=curr_ema,
            now=self._clock(),
        )
        if decision.suppressed_by_cooldown:
            logger.info(f"{self.symbol}: crossover suppressed by cooldown")
        if not decision.fired:
            return

        prediction = None
        if self.ml_enabled and self._predictor is not None and point is not None:
            try:
                prediction = await self._predictor.predict(self.symbol, model_inputs(point))
            except Exception as e:
                # The alert still goes out; the policy state is already committed
                logger.warning(f"{self.symbol}: prediction failed, alerting without it: {e}")
                prediction = None

        payload = {
            "symbol": self.symbol,
            "direction": decision.direction.value,
            "price": candle.close,
            "indicator_value": curr_ema,
            "indicator_period": self.indicator_period,
            "interval": self.interval,
            "difference_pct": decision.difference_pct,
            "candle_time": candle.open_time,
            "prediction": prediction.to_dict() if prediction is not None else None,
        }
        await self._outbox.alerts.put(AlertEvent(kind=EventKind.CROSSOVER, payload=payload))
        self.alerts_emitted += 1
        logger.info(
            f"{self.symbol}: crossover {decision.direction.value} at {candle.close} "
            f"({decision.difference_pct:+.2f}% vs EMA{self.indicator_period})",
            extra={"data": payload},
        )
