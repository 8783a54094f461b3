"""
Model Registry Port for versioned price-change models.

Application services depend on this port, not on the storage backend.

Version semantics:
- Every save creates a new immutable version with a time-derived id
- Ids sort in creation order
- "latest" is a per-symbol pointer; repointing never touches version content

Implementations:
- FileModelRegistry (local filesystem)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from ..ml.evaluation import PerformanceMetrics
from ..ml.price_model import Hyperparameters, PriceChangeModel


@dataclass
class ModelVersion:
    """A persisted model version and its sidecar documents."""

    symbol: str
    version_id: str
    hyperparameters: Hyperparameters
    features: List[str]
    performance: PerformanceMetrics
    feature_importance: Dict[str, float] = field(default_factory=dict)
    training_info: Dict[str, Any] = field(default_factory=dict)
    model: Optional[PriceChangeModel] = None
    path: str = ""


@runtime_checkable
class ModelRegistryPort(Protocol):
    """
    Port for model artifact storage and versioning.

    Usage:
        class ModelTrainingService:
            def __init__(self, registry: ModelRegistryPort):
                self._registry = registry

            async def publish(self, symbol, model, metrics):
                version = await self._registry.save_version(symbol, model, metrics)
                await self._registry.prune(symbol, keep=5)
    """

    async def save_version(
        self,
        symbol: str,
        model: PriceChangeModel,
        performance: PerformanceMetrics,
        feature_importance: Optional[Dict[str, float]] = None,
        training_info: Optional[Dict[str, Any]] = None,
    ) -> ModelVersion:
        """
        Persist a new immutable version and repoint "latest" to it.

        Returns:
            The stored version (without the model loaded).
        """
        ...

    async def load_version(
        self,
        symbol: str,
        version_id: Optional[str] = None,
    ) -> Optional[ModelVersion]:
        """
        Load a version with its model.

        Args:
            symbol: Trading symbol.
            version_id: Specific version, or None for the active one.

        Returns:
            ModelVersion, or None if it does not exist or cannot be read.
        """
        ...

    async def get_active_version(self, symbol: str) -> Optional[str]:
        """Version id the "latest" pointer resolves to, if any."""
        ...

    async def list_versions(self, symbol: str) -> List[str]:
        """Version ids, newest first."""
        ...

    async def get_performance(self, symbol: str, version_id: str) -> Optional[PerformanceMetrics]:
        """Stored metrics of a version without loading its model."""
        ...

    async def prune(self, symbol: str, keep: int = 5) -> List[str]:
        """
        Keep the ``keep`` newest versions and delete the rest.

        Returns:
            Deleted version ids.
        """
        ...

    async def list_symbols(self) -> List[str]:
        """Symbols with at least one stored version."""
        ...
