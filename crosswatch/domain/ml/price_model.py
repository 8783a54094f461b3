"""
Price-change regressor.

Wraps a scikit-learn ``MLPRegressor`` trained on normalized features and a
normalized future price change. Callers work in feature mappings and percent
units; normalization happens here.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from sklearn.neural_network import MLPRegressor

from .evaluation import PerformanceMetrics, evaluate_predictions
from .features import (
    FEATURE_NAMES,
    MIDPOINT,
    build_matrix,
    denormalize_target,
    normalize_features,
)


@dataclass(frozen=True)
class Hyperparameters:
    """MLP configuration. Defaults are the fallback used when every trial fails."""
    hidden_layers: Tuple[int, ...] = (16, 8)
    learning_rate: float = 0.1
    activation: str = "logistic"
    max_iter: int = 1000
    tol: float = 0.005

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hidden_layers": list(self.hidden_layers),
            "learning_rate": self.learning_rate,
            "activation": self.activation,
            "max_iter": self.max_iter,
            "tol": self.tol,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Hyperparameters":
        defaults = cls()
        return cls(
            hidden_layers=tuple(int(n) for n in data.get("hidden_layers", defaults.hidden_layers)),
            learning_rate=float(data.get("learning_rate", defaults.learning_rate)),
            activation=str(data.get("activation", defaults.activation)),
            max_iter=int(data.get("max_iter", defaults.max_iter)),
            tol=float(data.get("tol", defaults.tol)),
        )


class PriceChangeModel:
    """Trainable feature vector → future % change function."""

    def __init__(
        self,
        hyperparameters: Hyperparameters,
        random_state: Optional[int] = None,
        estimator: Optional[MLPRegressor] = None,
    ):
        self.hyperparameters = hyperparameters
        self.estimator = estimator or MLPRegressor(
            hidden_layer_sizes=hyperparameters.hidden_layers,
            activation=hyperparameters.activation,
            learning_rate_init=hyperparameters.learning_rate,
            max_iter=hyperparameters.max_iter,
            tol=hyperparameters.tol,
            random_state=random_state,
        )

    def fit(self, points: Sequence[Any]) -> "PriceChangeModel":
        X, y = build_matrix(points)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=ConvergenceWarning)
            self.estimator.fit(X, y)
        return self

    def predict_normalized(self, X: np.ndarray) -> np.ndarray:
        raw = np.asarray(self.estimator.predict(X), dtype=float).reshape(-1)
        return np.where(np.isnan(raw), MIDPOINT, raw)

    def predict_changes(self, X: np.ndarray) -> np.ndarray:
        """Predicted % changes for a normalized feature matrix."""
        return np.array([denormalize_target(v) for v in self.predict_normalized(X)])

    def predict_change(self, features: Mapping[str, Any]) -> float:
        X = np.asarray([normalize_features(features)], dtype=float)
        return float(self.predict_changes(X)[0])

    def evaluate(self, points: Sequence[Any]) -> PerformanceMetrics:
        if not points:
            return evaluate_predictions([], [])
        X, _ = build_matrix(points)
        actual = [p.future_price_change for p in points]
        return evaluate_predictions(self.predict_changes(X).tolist(), actual)

    def feature_importance(self, points: Sequence[Any]) -> Dict[str, float]:
        """
        MAE increase when each feature is pinned to the midpoint.

        Larger values mean the model leans on the feature more.
        """
        if not points:
            return {name: 0.0 for name in FEATURE_NAMES}

        X, _ = build_matrix(points)
        actual = [p.future_price_change for p in points]
        baseline = evaluate_predictions(self.predict_changes(X).tolist(), actual)

        importance = {}
        for column, name in enumerate(FEATURE_NAMES):
            ablated = X.copy()
            ablated[:, column] = MIDPOINT
            metrics = evaluate_predictions(self.predict_changes(ablated).tolist(), actual)
            importance[name] = metrics.mean_absolute_error - baseline.mean_absolute_error
        return importance
