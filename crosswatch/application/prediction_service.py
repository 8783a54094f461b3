"""
Prediction service.

Loads model versions through a bounded cache and turns live features into a
denormalized % change prediction with confidence bounds:

    lower/upper = prediction ∓ 1.96 × std_dev (from the version's metrics)
    confidence  = clamp(|prediction| / (std_dev + 0.5) × 50, 0, 100)

Ensemble mode combines up to ``ensemble_size`` newest versions with recency
weights N, N-1, ..., 1 and scores confidence by agreement:

    agreement = max(0, 1 - dispersion / |ensemble prediction|)
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from ..domain.interfaces.model_registry import ModelRegistryPort, ModelVersion
from ..domain.ml.evaluation import Z_95
from ..utils.logging_setup import get_logger

logger = get_logger(__name__)

DEFAULT_CACHE_SIZE = 50
DEFAULT_ENSEMBLE_SIZE = 5


def confidence_score(prediction: float, std_dev: float) -> float:
    """Confidence in [0, 100]: grows with |prediction|, shrinks with std_dev."""
    return min(100.0, max(0.0, abs(prediction) / (std_dev + 0.5) * 50))


@dataclass(frozen=True)
class Prediction:
    """A point prediction in % change units."""
    symbol: str
    predicted_change: float
    lower: float
    upper: float
    confidence: float
    std_dev: float
    version: str
    ensemble_versions: List[str] = field(default_factory=list)
    agreement: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ModelCache:
    """
    Bounded model cache keyed by (symbol, version_id).

    Eviction removes the oldest-inserted entry; reads do not refresh order.
    """

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE):
        self.max_size = max(1, max_size)
        self._entries: "OrderedDict[Tuple[str, str], ModelVersion]" = OrderedDict()
        self._lock = Lock()
        self.hits = 0
        self.misses = 0

    def get(self, symbol: str, version_id: str) -> Optional[ModelVersion]:
        with self._lock:
            entry = self._entries.get((symbol, version_id))
            if entry is None:
                self.misses += 1
            else:
                self.hits += 1
            return entry

    def put(self, version: ModelVersion) -> None:
        key = (version.symbol, version.version_id)
        with self._lock:
            if key in self._entries:
                return
            self._entries[key] = version
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted model {evicted[0]}/{evicted[1]} from cache")

    def invalidate(self, symbol: Optional[str] = None) -> None:
        with self._lock:
            if symbol is None:
                self._entries.clear()
                return
            for key in [k for k in self._entries if k[0] == symbol]:
                del self._entries[key]

    def keys(self) -> List[Tuple[str, str]]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class PredictionService:
    """
    Serves predictions from the model registry.

    Args:
        registry: Model registry port.
        cache_size: Maximum resident model versions.
        ensemble_size: Versions combined in ensemble mode.
        use_ensemble: Make ``predict`` without an explicit version use the ensemble.
    """

    def __init__(
        self,
        registry: ModelRegistryPort,
        cache_size: int = DEFAULT_CACHE_SIZE,
        ensemble_size: int = DEFAULT_ENSEMBLE_SIZE,
        use_ensemble: bool = False,
    ):
        self._registry = registry
        self.cache = ModelCache(cache_size)
        self.ensemble_size = ensemble_size
        self.use_ensemble = use_ensemble

    async def _load(self, symbol: str, version_id: str) -> Optional[ModelVersion]:
        cached = self.cache.get(symbol, version_id)
        if cached is not None:
            return cached
        version = await self._registry.load_version(symbol, version_id)
        if version is None or version.model is None:
            return None
        self.cache.put(version)
        return version

    async def predict(
        self,
        symbol: str,
        features: Mapping[str, Any],
        version_id: Optional[str] = None,
    ) -> Optional[Prediction]:
        """
        Predict with the active (or requested) version.

        Returns:
            Prediction, or None when no usable model exists.
        """
        if version_id is None and self.use_ensemble:
            return await self.predict_ensemble(symbol, features)

        if version_id is None:
            version_id = await self._registry.get_active_version(symbol)
            if version_id is None:
                logger.debug(f"{symbol}: no model available, skipping prediction")
                return None

        version = await self._load(symbol, version_id)
        if version is None:
            logger.warning(f"{symbol}: model version {version_id} unavailable")
            return None

        value = version.model.predict_change(features)
        std = version.performance.std_dev
        return Prediction(
            symbol=symbol,
            predicted_change=value,
            lower=value - Z_95 * std,
            upper=value + Z_95 * std,
            confidence=confidence_score(value, std),
            std_dev=std,
            version=version.version_id,
        )

    async def predict_ensemble(self, symbol: str, features: Mapping[str, Any]) -> Optional[Prediction]:
        """
        Recency-weighted ensemble over the newest versions.

        ``std_dev`` is the dispersion of the member predictions; the bounds
        use the weighted mean of the members' stored error std.
        """
        version_ids = (await self._registry.list_versions(symbol))[: self.ensemble_size]

        members: List[Tuple[ModelVersion, float]] = []
        for version_id in version_ids:
            version = await self._load(symbol, version_id)
            if version is None:
                logger.warning(f"{symbol}: skipping unreadable version {version_id} in ensemble")
                continue
            members.append((version, version.model.predict_change(features)))

        if not members:
            return None

        n = len(members)
        weights = np.arange(n, 0, -1, dtype=float)  # newest first: N, N-1, ..., 1
        predictions = np.array([p for _, p in members], dtype=float)
        model_stds = np.array([v.performance.std_dev for v, _ in members], dtype=float)

        if np.all(predictions == predictions[0]):
            # Unanimous members: avoid float noise from the weighted sum
            combined, dispersion = float(predictions[0]), 0.0
        else:
            combined = float(np.average(predictions, weights=weights))
            dispersion = float(np.std(predictions))
        error_std = float(np.average(model_stds, weights=weights))

        if combined != 0:
            agreement = max(0.0, 1.0 - dispersion / abs(combined))
        else:
            agreement = 1.0 if dispersion == 0 else 0.0

        return Prediction(
            symbol=symbol,
            predicted_change=combined,
            lower=combined - Z_95 * error_std,
            upper=combined + Z_95 * error_std,
            confidence=agreement * 100,
            std_dev=dispersion,
            version=members[0][0].version_id,
            ensemble_versions=[v.version_id for v, _ in members],
            agreement=agreement,
        )

    def invalidate(self, symbol: Optional[str] = None) -> None:
        """Drop cached versions, e.g. after pruning."""
        self.cache.invalidate(symbol)
