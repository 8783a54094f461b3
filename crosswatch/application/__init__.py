"""Application layer: symbol sessions, supervision, model lifecycle, orchestration."""

from .deferred_tasks import DeferredTaskScheduler
from .label_backfill import LabelBackfillService
from .model_training_service import (
    BatchSummary,
    ModelTrainingService,
    TrainingOutcome,
    TrainingStatus,
    VersionComparison,
)
from .orchestrator import Orchestrator
from .prediction_service import ModelCache, Prediction, PredictionService
from .prediction_tracker import PredictionAccuracyTracker
from .stream_supervisor import ReconcileResult, SessionRegistry, StreamSupervisor
from .symbol_session import SessionOutbox, SessionState, SymbolStreamSession

__all__ = [
    "DeferredTaskScheduler",
    "LabelBackfillService",
    "BatchSummary",
    "ModelTrainingService",
    "TrainingOutcome",
    "TrainingStatus",
    "VersionComparison",
    "Orchestrator",
    "ModelCache",
    "Prediction",
    "PredictionService",
    "PredictionAccuracyTracker",
    "ReconcileResult",
    "SessionRegistry",
    "StreamSupervisor",
    "SessionOutbox",
    "SessionState",
    "SymbolStreamSession",
]
