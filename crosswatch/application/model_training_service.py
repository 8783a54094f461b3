"""
Model training service.

Per-symbol lifecycle: gather labeled points, split 80/20 by position, search
hyperparameters on the training part, fit the winner, evaluate on the held-out
part, persist a new version and prune old ones.

Training is serialized: one symbol at a time behind a single asyncio.Lock,
with CPU-bound fitting pushed to a worker thread. The memory guard is checked
before each symbol and before each search trial.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..domain.events.alert_events import AlertEvent, EventKind
from ..domain.exceptions import ModelVersionNotFoundError
from ..domain.interfaces.alert_sink import AlertSink
from ..domain.interfaces.model_registry import ModelRegistryPort
from ..domain.ml.evaluation import PerformanceMetrics
from ..domain.ml.feature_point import FeaturePoint
from ..domain.ml.hyperparameter_search import HyperparameterSearch, split_by_position
from ..domain.ml.price_model import PriceChangeModel
from ..infrastructure.monitoring.resource_guard import MemoryGuard
from ..infrastructure.stores.training_data_store import TrainingDataStore
from ..utils.logging_setup import get_logger
from .prediction_service import PredictionService

logger = get_logger(__name__)

TEST_FRACTION = 0.2
MIN_TRAINING_POINTS = 100


class TrainingStatus(Enum):
    TRAINED = "trained"
    INSUFFICIENT_DATA = "insufficient_data"
    SKIPPED_RESOURCE = "skipped_resource"
    FAILED = "failed"


@dataclass
class TrainingOutcome:
    """Result of one symbol's training run."""
    symbol: str
    status: TrainingStatus
    version_id: Optional[str] = None
    performance: Optional[PerformanceMetrics] = None
    labeled_points: int = 0
    pruned: List[str] = field(default_factory=list)
    used_default_hyperparameters: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "status": self.status.value,
            "version_id": self.version_id,
            "performance": self.performance.to_dict() if self.performance else None,
            "labeled_points": self.labeled_points,
            "pruned": list(self.pruned),
            "used_default_hyperparameters": self.used_default_hyperparameters,
            "error": self.error,
        }


@dataclass
class BatchSummary:
    """Per-status counts of a batch run."""
    trained: int = 0
    failed: int = 0
    insufficient_data: int = 0
    skipped_resource: int = 0
    outcomes: List[TrainingOutcome] = field(default_factory=list)

    def add(self, outcome: TrainingOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status is TrainingStatus.TRAINED:
            self.trained += 1
        elif outcome.status is TrainingStatus.FAILED:
            self.failed += 1
        elif outcome.status is TrainingStatus.INSUFFICIENT_DATA:
            self.insufficient_data += 1
        else:
            self.skipped_resource += 1

    def counts(self) -> Dict[str, int]:
        return {
            "trained": self.trained,
            "failed": self.failed,
            "insufficient_data": self.insufficient_data,
            "skipped_resource": self.skipped_resource,
        }


@dataclass
class VersionComparison:
    """Head-to-head result of two versions on the same held-out points."""
    symbol: str
    version_a: str
    version_b: str
    metrics_a: PerformanceMetrics
    metrics_b: PerformanceMetrics
    winner: str
    improvement_pct: Optional[float]
    test_samples: int

    @property
    def score_a(self) -> float:
        return self.metrics_a.score

    @property
    def score_b(self) -> float:
        return self.metrics_b.score

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["score_a"] = self.score_a
        data["score_b"] = self.score_b
        return data


def relative_improvement(score_a: float, score_b: float) -> Optional[float]:
    """|a - b| / min(a, b) in percent; None when the denominator is zero."""
    denominator = min(score_a, score_b)
    if denominator == 0:
        return None
    return abs((score_a - score_b) / denominator) * 100


class ModelTrainingService:
    """
    Trains, versions and compares per-symbol models.

    Args:
        store: Source of labeled training points.
        registry: Version storage.
        guard: Memory guard consulted before each symbol and trial.
        prediction_service: Cache to invalidate after new versions land.
        alert_sink: Receives the trainingComplete event of ``train_all``.
        min_training_points: Labeled points required to train.
        retained_versions: Versions kept per symbol after pruning.
        n_trials: Hyperparameter search trials.
        random_seed: Seed for search and fitting; None keeps runs nondeterministic.
    """

    def __init__(
        self,
        store: TrainingDataStore,
        registry: ModelRegistryPort,
        guard: MemoryGuard,
        prediction_service: Optional[PredictionService] = None,
        alert_sink: Optional[AlertSink] = None,
        min_training_points: int = MIN_TRAINING_POINTS,
        retained_versions: int = 5,
        n_trials: int = 5,
        random_seed: Optional[int] = None,
    ):
        self._store = store
        self._registry = registry
        self._guard = guard
        self._prediction_service = prediction_service
        self._alert_sink = alert_sink
        self.min_training_points = min_training_points
        self.retained_versions = retained_versions
        self.n_trials = n_trials
        self.random_seed = random_seed
        self._lock = asyncio.Lock()

    @property
    def is_training(self) -> bool:
        return self._lock.locked()

    async def train_symbol(self, symbol: str) -> TrainingOutcome:
        """Train, persist and prune one symbol's model."""
        async with self._lock:
            return await self._train_locked(symbol)

    async def _train_locked(self, symbol: str) -> TrainingOutcome:
        points = self._store.labeled_points(symbol)
        if len(points) < self.min_training_points:
            logger.info(
                f"{symbol}: {len(points)} labeled points, need {self.min_training_points}; not training"
            )
            return TrainingOutcome(symbol, TrainingStatus.INSUFFICIENT_DATA, labeled_points=len(points))

        if not self._guard.has_headroom():
            return TrainingOutcome(symbol, TrainingStatus.SKIPPED_RESOURCE, labeled_points=len(points))

        train_points, test_points = split_by_position(points, TEST_FRACTION)
        logger.info(
            f"{symbol}: training on {len(train_points)} points, testing on {len(test_points)}",
            extra={"data": {"symbol": symbol, "train": len(train_points), "test": len(test_points)}},
        )

        try:
            model, search_result = await asyncio.to_thread(self._fit, symbol, train_points)
            performance = model.evaluate(test_points)
            importance = model.feature_importance(test_points)
            version = await self._registry.save_version(
                symbol,
                model,
                performance,
                feature_importance=importance,
                training_info={
                    "train_points": len(train_points),
                    "test_points": len(test_points),
                    "used_default_hyperparameters": search_result.used_default,
                    "completed_trials": search_result.completed_trials,
                    "skipped_trials": search_result.skipped_trials,
                },
            )
            pruned = await self._registry.prune(symbol, keep=self.retained_versions)
        except (ValueError, ArithmeticError, MemoryError, OSError) as e:
            logger.error(f"{symbol}: training failed: {e}", exc_info=True)
            return TrainingOutcome(symbol, TrainingStatus.FAILED, labeled_points=len(points), error=str(e))

        if self._prediction_service is not None:
            self._prediction_service.invalidate(symbol)

        logger.info(
            f"{symbol}: trained {version.version_id} "
            f"(dirAcc {performance.direction_accuracy:.3f}, MAE {performance.mean_absolute_error:.3f})",
            extra={"data": {"symbol": symbol, "version": version.version_id, **performance.to_dict()}},
        )
        return TrainingOutcome(
            symbol=symbol,
            status=TrainingStatus.TRAINED,
            version_id=version.version_id,
            performance=performance,
            labeled_points=len(points),
            pruned=pruned,
            used_default_hyperparameters=search_result.used_default,
        )

    def _fit(self, symbol: str, train_points: List[FeaturePoint]):
        search = HyperparameterSearch(
            n_trials=self.n_trials,
            seed=self.random_seed,
            resource_check=self._guard.has_headroom,
        )
        result = search.run(train_points, symbol=symbol)
        model = PriceChangeModel(result.best, random_state=self.random_seed).fit(train_points)
        return model, result

    async def train_all(self, symbols: Iterable[str]) -> BatchSummary:
        """
        Train each symbol in turn.

        A guard trip skips the rest of the batch. Per-symbol failures are
        counted, never raised.
        """
        summary = BatchSummary()
        remaining = list(symbols)

        for index, symbol in enumerate(remaining):
            if not self._guard.has_headroom():
                for skipped in remaining[index:]:
                    summary.add(TrainingOutcome(skipped, TrainingStatus.SKIPPED_RESOURCE))
                logger.warning(
                    f"Memory guard tripped, skipping {len(remaining) - index} symbol(s) in this batch"
                )
                break
            try:
                outcome = await self.train_symbol(symbol)
            except Exception as e:
                logger.error(f"{symbol}: unexpected training error: {e}", exc_info=True)
                outcome = TrainingOutcome(symbol, TrainingStatus.FAILED, error=str(e))
            summary.add(outcome)

        logger.info("Training batch complete", extra={"data": summary.counts()})
        if self._alert_sink is not None:
            await self._alert_sink.emit(AlertEvent(kind=EventKind.TRAINING_COMPLETE, payload=summary.counts()))
        return summary

    async def compare_versions(self, symbol: str, version_a: str, version_b: str) -> VersionComparison:
        """
        Score two versions on the symbol's current held-out split.

        Raises:
            ModelVersionNotFoundError: If either version cannot be loaded.
        """
        loaded = {}
        for version_id in (version_a, version_b):
            version = await self._registry.load_version(symbol, version_id)
            if version is None or version.model is None:
                raise ModelVersionNotFoundError(f"{symbol}: version {version_id} not found")
            loaded[version_id] = version

        _, test_points = split_by_position(self._store.labeled_points(symbol), TEST_FRACTION)
        metrics_a = loaded[version_a].model.evaluate(test_points)
        metrics_b = loaded[version_b].model.evaluate(test_points)

        winner = version_a if metrics_a.score > metrics_b.score else version_b
        improvement = relative_improvement(metrics_a.score, metrics_b.score)
        if improvement is not None and not math.isfinite(improvement):
            improvement = None

        return VersionComparison(
            symbol=symbol,
            version_a=version_a,
            version_b=version_b,
            metrics_a=metrics_a,
            metrics_b=metrics_b,
            winner=winner,
            improvement_pct=improvement,
            test_samples=len(test_points),
        )

    async def compare_latest(self, symbols: Iterable[str]) -> Dict[str, Any]:
        """Compare the two newest versions of each symbol."""
        results: Dict[str, VersionComparison] = {}
        failed = 0
        skipped = 0

        for symbol in symbols:
            versions = await self._registry.list_versions(symbol)
            if len(versions) < 2:
                skipped += 1
                continue
            newest, previous = versions[0], versions[1]
            try:
                results[symbol] = await self.compare_versions(symbol, previous, newest)
            except ModelVersionNotFoundError as e:
                failed += 1
                logger.warning(f"{symbol}: comparison failed: {e}")

        logger.info(
            f"Compared {len(results)} symbol(s), {failed} failed, {skipped} without two versions",
        )
        return {"results": results, "compared": len(results), "failed": failed, "skipped": skipped}
