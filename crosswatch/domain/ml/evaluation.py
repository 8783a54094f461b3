"""Performance metrics for price-change predictions."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Sequence

import numpy as np

Z_95 = 1.96
MAE_PENALTY = 0.1


@dataclass(frozen=True)
class PerformanceMetrics:
    """
    Error statistics for one evaluation run, in percent-change units.

    ``confidence_interval_95`` is the half-width of the 95% interval on the
    mean absolute error: 1.96 * std_dev / sqrt(sample_count).
    """
    mean_absolute_error: float
    direction_accuracy: float
    confidence_interval_95: float
    std_dev: float
    sample_count: int

    @property
    def score(self) -> float:
        """Model selection score: direction accuracy minus 0.1 * MAE."""
        return self.direction_accuracy - MAE_PENALTY * self.mean_absolute_error

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PerformanceMetrics":
        return cls(
            mean_absolute_error=float(data.get("mean_absolute_error", 0.0)),
            direction_accuracy=float(data.get("direction_accuracy", 0.0)),
            confidence_interval_95=float(data.get("confidence_interval_95", 0.0)),
            std_dev=float(data.get("std_dev", 0.0)),
            sample_count=int(data.get("sample_count", 0)),
        )


def score_of(metrics: PerformanceMetrics) -> float:
    return metrics.score


def evaluate_predictions(predicted: Sequence[float], actual: Sequence[float]) -> PerformanceMetrics:
    """
    Compare denormalized predictions with realized price changes.

    Direction is counted as correct when both values share a sign, with zero
    treated as non-negative.
    """
    if len(predicted) != len(actual):
        raise ValueError(f"length mismatch: {len(predicted)} predictions vs {len(actual)} actuals")

    n = len(actual)
    if n == 0:
        return PerformanceMetrics(0.0, 0.0, 0.0, 0.0, 0)

    pred = np.asarray(predicted, dtype=float)
    real = np.asarray(actual, dtype=float)

    errors = np.abs(pred - real)
    mae = float(errors.mean())
    std = float(errors.std())
    direction_hits = np.count_nonzero((pred >= 0) == (real >= 0))

    return PerformanceMetrics(
        mean_absolute_error=mae,
        direction_accuracy=direction_hits / n,
        confidence_interval_95=Z_95 * std / math.sqrt(n),
        std_dev=std,
        sample_count=n,
    )
