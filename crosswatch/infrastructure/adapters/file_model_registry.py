"""
File-based Model Registry Adapter.

Infrastructure implementation of ModelRegistryPort using the local filesystem.
Each version is a directory of independent files; the active version is named
by a small manifest written via temp-file-then-rename.

Directory structure:
    ml_models/
        BTCUSDT/
            latest.json                          # {"version": "v20261019T120000123456Z"}
            v20261019T120000123456Z/
                model.pkl                        # pickled MLPRegressor
                hyperparams.json
                features.json
                performance.json
                feature_importance.json
                training.json
            v20261019T000000654321Z/
                ...

Usage:
    registry = FileModelRegistry(Path("ml_models"))
    version = await registry.save_version("BTCUSDT", model, metrics)
    loaded = await registry.load_version("BTCUSDT")        # active
    await registry.prune("BTCUSDT", keep=5)
"""

from __future__ import annotations

import json
import os
import pickle
import re
import shutil
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from sklearn.neural_network import MLPRegressor

from ...domain.interfaces.model_registry import ModelVersion
from ...domain.ml.evaluation import PerformanceMetrics
from ...domain.ml.features import FEATURE_NAMES
from ...domain.ml.price_model import Hyperparameters, PriceChangeModel
from ...domain.symbols import SYMBOL_PATTERN, validate_symbol
from ...utils.atomic_io import atomic_write_json
from ...utils.logging_setup import get_logger
from ...utils.timezone import UTC, now_utc

logger = get_logger(__name__)

VERSION_FORMAT = "%Y%m%dT%H%M%S%fZ"
VERSION_PATTERN = re.compile(r"^v\d{8}T\d{12}Z$")

LATEST_MANIFEST = "latest.json"
MODEL_FILE = "model.pkl"
HYPERPARAMS_FILE = "hyperparams.json"
FEATURES_FILE = "features.json"
PERFORMANCE_FILE = "performance.json"
IMPORTANCE_FILE = "feature_importance.json"
TRAINING_FILE = "training.json"


def format_version_id(moment: datetime) -> str:
    return "v" + moment.astimezone(UTC).strftime(VERSION_FORMAT)


def parse_version_id(version_id: str) -> datetime:
    return datetime.strptime(version_id[1:], VERSION_FORMAT).replace(tzinfo=UTC)


class FileModelRegistry:
    """
    File-based implementation of ModelRegistryPort.

    Versions are written to a hidden staging directory and renamed into
    place, so a reader never observes a partially written version. The
    ``latest.json`` manifest is replaced atomically.
    """

    def __init__(self, base_dir: Path, clock: Callable[[], datetime] = now_utc) -> None:
        """
        Args:
            base_dir: Base directory for model storage.
            clock: Source of creation times for version ids.
        """
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._lock = Lock()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _symbol_dir(self, symbol: str) -> Path:
        return self._base_dir / validate_symbol(symbol)

    def _version_dir(self, symbol: str, version_id: str) -> Path:
        if not VERSION_PATTERN.match(version_id):
            raise ValueError(f"invalid version id: {version_id!r}")
        return self._symbol_dir(symbol) / version_id

    def _version_ids(self, symbol: str) -> List[str]:
        """Version ids, oldest first."""
        symbol_dir = self._symbol_dir(symbol)
        if not symbol_dir.exists():
            return []
        return sorted(
            p.name for p in symbol_dir.iterdir()
            if p.is_dir() and VERSION_PATTERN.match(p.name)
        )

    def _next_version_id(self, symbol: str) -> str:
        """Time-derived id, bumped past the newest existing id if the clock collides."""
        candidate = self._clock()
        existing = self._version_ids(symbol)
        if existing:
            newest = parse_version_id(existing[-1])
            if candidate <= newest:
                candidate = newest + timedelta(microseconds=1)
        return format_version_id(candidate)

    def _read_json(self, path: Path) -> Optional[Any]:
        try:
            with open(path) as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable registry file {path}: {e}")
            return None

    async def save_version(
        self,
        symbol: str,
        model: PriceChangeModel,
        performance: PerformanceMetrics,
        feature_importance: Optional[Dict[str, float]] = None,
        training_info: Optional[Dict[str, Any]] = None,
    ) -> ModelVersion:
        """
        Persist a new immutable version and repoint ``latest.json`` to it.

        Returns:
            The stored version (without the model loaded).
        """
        with self._lock:
            symbol_dir = self._symbol_dir(symbol)
            symbol_dir.mkdir(parents=True, exist_ok=True)

            version_id = self._next_version_id(symbol)
            staging = Path(tempfile.mkdtemp(dir=symbol_dir, prefix=f".{version_id}."))
            final_dir = symbol_dir / version_id

            importance = feature_importance or {}
            info = dict(training_info or {})
            info.setdefault("created_at", parse_version_id(version_id).isoformat())

            try:
                with open(staging / MODEL_FILE, "wb") as f:
                    pickle.dump(model.estimator, f)
                documents = {
                    HYPERPARAMS_FILE: model.hyperparameters.to_dict(),
                    FEATURES_FILE: list(FEATURE_NAMES),
                    PERFORMANCE_FILE: performance.to_dict(),
                    IMPORTANCE_FILE: importance,
                    TRAINING_FILE: info,
                }
                for name, payload in documents.items():
                    with open(staging / name, "w") as f:
                        json.dump(payload, f, indent=2)
                os.rename(staging, final_dir)
            except BaseException:
                shutil.rmtree(staging, ignore_errors=True)
                raise

            atomic_write_json(symbol_dir / LATEST_MANIFEST, {"version": version_id})

        logger.info(
            f"Saved model {symbol}/{version_id}",
            extra={"data": {"symbol": symbol, "version": version_id, **performance.to_dict()}},
        )
        return ModelVersion(
            symbol=symbol,
            version_id=version_id,
            hyperparameters=model.hyperparameters,
            features=list(FEATURE_NAMES),
            performance=performance,
            feature_importance=importance,
            training_info=info,
            path=str(final_dir),
        )

    async def get_active_version(self, symbol: str) -> Optional[str]:
        """
        Resolve ``latest.json``.

        A missing or corrupt manifest, or one naming a deleted version, falls
        back to the newest version on disk.
        """
        symbol_dir = self._symbol_dir(symbol)
        manifest = self._read_json(symbol_dir / LATEST_MANIFEST)
        if isinstance(manifest, dict):
            version_id = manifest.get("version")
            if (
                isinstance(version_id, str)
                and VERSION_PATTERN.match(version_id)
                and (symbol_dir / version_id).is_dir()
            ):
                return version_id

        existing = self._version_ids(symbol)
        if existing:
            if manifest is not None:
                logger.warning(f"{symbol}: latest manifest unusable, falling back to {existing[-1]}")
            return existing[-1]
        return None

    async def load_version(
        self,
        symbol: str,
        version_id: Optional[str] = None,
    ) -> Optional[ModelVersion]:
        """
        Load a version with its model.

        Returns:
            ModelVersion, or None if missing or unreadable.
        """
        if version_id is None:
            version_id = await self.get_active_version(symbol)
            if version_id is None:
                return None

        if not VERSION_PATTERN.match(version_id):
            logger.warning(f"{symbol}: malformed version id {version_id!r}")
            return None

        version_dir = self._version_dir(symbol, version_id)
        if not version_dir.is_dir():
            logger.debug(f"Model version not found: {version_dir}")
            return None

        hyperparams = self._read_json(version_dir / HYPERPARAMS_FILE)
        performance = self._read_json(version_dir / PERFORMANCE_FILE)
        if not isinstance(hyperparams, dict) or not isinstance(performance, dict):
            logger.warning(f"{symbol}/{version_id}: missing or corrupt sidecar files")
            return None

        try:
            with open(version_dir / MODEL_FILE, "rb") as f:
                estimator = pickle.load(f)
        except (OSError, pickle.UnpicklingError, EOFError, AttributeError) as e:
            logger.error(f"Failed to load model {version_dir}: {e}")
            return None
        if not isinstance(estimator, MLPRegressor):
            logger.warning(f"{symbol}/{version_id}: {MODEL_FILE} holds {type(estimator).__name__}, not a regressor")
            return None

        try:
            params = Hyperparameters.from_dict(hyperparams)
            metrics = PerformanceMetrics.from_dict(performance)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"{symbol}/{version_id}: invalid sidecar values: {e}")
            return None
        features = self._read_json(version_dir / FEATURES_FILE)
        return ModelVersion(
            symbol=symbol,
            version_id=version_id,
            hyperparameters=params,
            features=features if isinstance(features, list) else list(FEATURE_NAMES),
            performance=metrics,
            feature_importance=self._read_json(version_dir / IMPORTANCE_FILE) or {},
            training_info=self._read_json(version_dir / TRAINING_FILE) or {},
            model=PriceChangeModel(params, estimator=estimator),
            path=str(version_dir),
        )

    async def list_versions(self, symbol: str) -> List[str]:
        """Version ids, newest first."""
        return list(reversed(self._version_ids(symbol)))

    async def get_performance(self, symbol: str, version_id: str) -> Optional[PerformanceMetrics]:
        if not VERSION_PATTERN.match(version_id):
            return None
        version_dir = self._version_dir(symbol, version_id)
        data = self._read_json(version_dir / PERFORMANCE_FILE)
        if not isinstance(data, dict):
            return None
        try:
            return PerformanceMetrics.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"{symbol}/{version_id}: invalid performance values: {e}")
            return None

    async def prune(self, symbol: str, keep: int = 5) -> List[str]:
        """
        Keep the ``keep`` newest versions and delete the rest.

        The version ``latest.json`` points at is never deleted.

        Returns:
            Deleted version ids, oldest first.
        """
        if keep < 1:
            raise ValueError(f"keep must be >= 1, got {keep}")

        active = await self.get_active_version(symbol)
        deleted: List[str] = []

        with self._lock:
            existing = self._version_ids(symbol)
            for version_id in existing[:-keep] if len(existing) > keep else []:
                if version_id == active:
                    logger.warning(f"{symbol}: not pruning active version {version_id}")
                    continue
                shutil.rmtree(self._symbol_dir(symbol) / version_id)
                deleted.append(version_id)

        if deleted:
            logger.info(
                f"Pruned {len(deleted)} old version(s) for {symbol}",
                extra={"data": {"symbol": symbol, "deleted": deleted}},
            )
        return deleted

    async def list_symbols(self) -> List[str]:
        return sorted(
            p.name for p in self._base_dir.iterdir()
            if p.is_dir() and SYMBOL_PATTERN.match(p.name) and self._version_ids(p.name)
        )
