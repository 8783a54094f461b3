"""
Orchestrator - wires the streaming and model subsystems together.

Thin coordination layer that:
- Builds the stores, registry, services and stream supervisor from config
- Drains the shared session outbox (alerts to the sink, feature points to the
  training data store plus their label backfill jobs)
- Runs the periodic retrain and persistence jobs
- Owns start/stop ordering
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from ..domain.events.alert_events import AlertEvent, EventKind
from ..domain.exceptions import ValidationError
from ..domain.interfaces.alert_sink import AlertSink
from ..domain.interfaces.market_data import MarketDataProvider
from ..domain.services.crossover_policy import CrossoverPolicy
from ..infrastructure.adapters.file_model_registry import FileModelRegistry
from ..infrastructure.monitoring.resource_guard import MemoryGuard
from ..infrastructure.stores.training_data_store import TrainingDataStore
from ..utils.logging_setup import get_logger
from .deferred_tasks import DeferredTaskScheduler
from .label_backfill import LabelBackfillService
from .model_training_service import BatchSummary, ModelTrainingService
from .prediction_service import PredictionService
from .prediction_tracker import PredictionAccuracyTracker
from .stream_supervisor import StreamSupervisor
from .symbol_session import SessionOutbox, SymbolStreamSession

if TYPE_CHECKING:
    from config.models import AppConfig

logger = get_logger(__name__)

PERFORMANCE_FILE = "model_performance.json"


class Orchestrator:
    """
    Main application coordinator.

    Args:
        config: Parsed application config.
        provider: Market data port.
        alert_sink: Receives crossover, newSymbol and trainingComplete events.
        guard: Memory guard (built from config when omitted).
        clock: Wall-clock seconds source shared with sessions and jobs.
    """

    def __init__(
        self,
        config: AppConfig,
        provider: MarketDataProvider,
        alert_sink: AlertSink,
        guard: Optional[MemoryGuard] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.provider = provider
        self.alert_sink = alert_sink
        self._clock = clock

        stream, ml, storage = config.stream, config.ml, config.storage

        self.guard = guard or MemoryGuard(
            high_water_mb=ml.memory_high_water_mb,
            warning_mb=ml.memory_warning_mb,
        )
        self.store = TrainingDataStore(
            Path(storage.data_dir),
            buffer_cap=ml.buffer_cap,
            export_dir=Path(storage.export_dir),
        )
        self.registry = FileModelRegistry(Path(storage.model_dir))
        self.scheduler = DeferredTaskScheduler()
        self.backfill = LabelBackfillService(
            self.store,
            provider,
            self.scheduler,
            horizon_sec=ml.backfill_horizon_sec,
            clock=clock,
        )
        self.tracker = PredictionAccuracyTracker(
            Path(storage.model_dir) / PERFORMANCE_FILE,
            provider,
            self.scheduler,
            horizon_sec=ml.backfill_horizon_sec,
            clock=clock,
        )
        self.predictions = PredictionService(
            self.registry,
            cache_size=ml.model_cache_size,
            ensemble_size=ml.ensemble_size,
            use_ensemble=ml.use_ensemble,
        )
        self.training = ModelTrainingService(
            self.store,
            self.registry,
            self.guard,
            prediction_service=self.predictions,
            alert_sink=alert_sink,
            min_training_points=ml.min_training_points,
            retained_versions=ml.retained_versions,
            n_trials=ml.hyperparameter_trials,
            random_seed=ml.random_seed,
        )

        self.outbox = SessionOutbox()
        self.policy = CrossoverPolicy(cooldown_sec=config.alerts.cooldown_sec)
        self.supervisor = StreamSupervisor(
            provider,
            self._make_session,
            self.outbox,
            volume_threshold=stream.volume_threshold,
            check_interval_sec=stream.check_interval_sec,
            heartbeat_interval_sec=stream.heartbeat_interval_sec,
        )

        self._running = False
        self._tasks: List[asyncio.Task] = []

    @property
    def ml_enabled(self) -> bool:
        return self.config.ml.enabled

    @property
    def is_running(self) -> bool:
        return self._running

    def _make_session(self, symbol: str) -> SymbolStreamSession:
        stream = self.config.stream
        return SymbolStreamSession(
            symbol,
            self.provider,
            self.policy,
            self.outbox,
            interval=stream.interval,
            indicator_period=stream.indicator_period,
            backfill_buffer=stream.backfill_buffer,
            reconnect_delay_sec=stream.reconnect_delay_sec,
            min_feature_candles=stream.min_feature_candles,
            ml_enabled=self.ml_enabled,
            predictor=self.predictions if self.ml_enabled else None,
            clock=self._clock,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Restore persisted state, start streaming and the periodic jobs.

        Raises:
            MarketDataUnavailableError: If market data is unreachable at startup.
        """
        if self._running:
            logger.warning("Orchestrator already running")
            return

        logger.info("Starting orchestrator...", extra={"data": {"ml_enabled": self.ml_enabled}})

        if self.ml_enabled:
            self.store.warm_buffers()
            self.tracker.load()
            self.backfill.reschedule_pending()

        # Dispatchers first so nothing produced during the first pass piles up
        self._tasks = [
            asyncio.create_task(self._dispatch_alerts(), name="dispatch-alerts"),
            asyncio.create_task(self._dispatch_feature_points(), name="dispatch-feature-points"),
        ]

        try:
            await self.supervisor.start()
        except BaseException:
            await self._cancel_tasks()
            raise

        if self.ml_enabled:
            self._tasks.append(asyncio.create_task(self._retrain_loop(), name="retrain"))
            self._tasks.append(asyncio.create_task(self._persist_loop(), name="persist"))

        self._running = True
        logger.info(f"Orchestrator started, tracking {len(self.supervisor.tracked_symbols)} symbol(s)")

    async def stop(self) -> None:
        """
        Graceful stop: periodic jobs and sessions end, state is persisted.

        Deferred label and accuracy jobs keep running until ``shutdown``.
        """
        if not self._running:
            return
        self._running = False
        logger.info("Stopping orchestrator...")

        await self.supervisor.stop()
        await self._cancel_tasks()
        if self.ml_enabled:
            await self.persist()
        logger.info("Orchestrator stopped")

    async def shutdown(self) -> None:
        """Process exit: stop, then cancel outstanding deferred jobs."""
        await self.stop()
        await self.scheduler.cancel_all()

    async def _cancel_tasks(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

    # ------------------------------------------------------------------
    # Outbox dispatch
    # ------------------------------------------------------------------

    async def _dispatch_alerts(self) -> None:
        while True:
            event = await self.outbox.alerts.get()
            try:
                await self.handle_alert(event)
            except Exception as e:
                logger.error(f"Alert dispatch failed: {e}", exc_info=True)
            finally:
                self.outbox.alerts.task_done()

    async def handle_alert(self, event: AlertEvent) -> None:
        """Forward one event to the sink and track any attached prediction."""
        await self.alert_sink.emit(event)
        if event.kind is not EventKind.CROSSOVER:
            return
        prediction = event.payload.get("prediction")
        if prediction:
            self.tracker.record(
                event.payload["symbol"],
                event.payload["price"],
                prediction["predicted_change"],
                prediction.get("version"),
            )

    async def _dispatch_feature_points(self) -> None:
        while True:
            point = await self.outbox.feature_points.get()
            try:
                self.handle_feature_point(point)
            except Exception as e:
                logger.error(f"Feature point dispatch failed: {e}", exc_info=True)
            finally:
                self.outbox.feature_points.task_done()

    def handle_feature_point(self, point) -> bool:
        """Persist one feature point and schedule its label. Returns False if rejected."""
        try:
            self.store.append(point)
        except ValidationError as e:
            logger.warning(f"Dropped feature point {point.symbol}@{point.timestamp}: {e}")
            return False
        self.backfill.schedule(point)
        return True

    # ------------------------------------------------------------------
    # Periodic jobs
    # ------------------------------------------------------------------

    async def retrain(self) -> BatchSummary:
        """Retrain every tracked symbol (pruning happens per symbol)."""
        return await self.training.train_all(self.supervisor.tracked_symbols)

    async def persist(self) -> None:
        """Export training data to CSV and save prediction accuracy stats."""
        try:
            exported = await asyncio.to_thread(self.store.export_all)
            self.tracker.save()
        except OSError as e:
            logger.error(f"Persistence failed: {e}")
            return
        logger.info(f"Persisted state ({len(exported)} CSV export(s))")

    async def _retrain_loop(self) -> None:
        interval = self.config.ml.retrain_interval_sec
        while True:
            await asyncio.sleep(interval)
            try:
                await self.retrain()
            except Exception as e:
                logger.error(f"Retrain cycle failed: {e}", exc_info=True)

    async def _persist_loop(self) -> None:
        interval = self.config.ml.persist_interval_sec
        while True:
            await asyncio.sleep(interval)
            await self.persist()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "tracked": self.supervisor.tracked_symbols,
            "sessions": [s.snapshot() for s in self.supervisor.registry.sessions()],
            "heartbeat_restarts": self.supervisor.heartbeat_restarts,
            "deferred_jobs": self.scheduler.pending,
            "training_buffers": self.store.stats(),
            "labels": {"written": self.backfill.labeled, "abandoned": self.backfill.abandoned},
            "memory": self.guard.snapshot(),
            "prediction_accuracy": self.tracker.stats(),
        }
