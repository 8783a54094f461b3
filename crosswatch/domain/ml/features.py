"""
Feature normalization.

Every model input and the target are scaled into [0, 1] using fixed, named
(min, max) ranges. Values outside a range are clamped. Missing or NaN values
map to the midpoint 0.5 so one bad input never fails a whole prediction.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Mapping, Sequence, Tuple

import numpy as np

MIDPOINT = 0.5

# (min, max) per model input
FEATURE_RANGES: Dict[str, Tuple[float, float]] = {
    "ema_diff": (-10.0, 10.0),       # % distance of close from EMA
    "rsi": (0.0, 100.0),
    "macd_hist": (-1.0, 1.0),
    "bb_width": (0.0, 0.1),          # (upper - lower) / middle
    "volume": (0.0, 1e9),
    "volume_change": (-1.0, 1.0),    # fractional change vs previous candle
    "atr": (0.0, 1.0),
}

# Column order of the model input matrix
FEATURE_NAMES: Tuple[str, ...] = tuple(FEATURE_RANGES)

# Target: future % price change over the backfill horizon
PRICE_CHANGE_RANGE: Tuple[float, float] = (-10.0, 10.0)


def normalize(value: Any, bounds: Tuple[float, float]) -> float:
    """Scale ``value`` into [0, 1], clamping outliers and mapping NaN/None to 0.5."""
    low, high = bounds
    try:
        as_float = float(value)
    except (TypeError, ValueError):
        return MIDPOINT
    if math.isnan(as_float):
        return MIDPOINT
    if high == low:
        return MIDPOINT
    scaled = (as_float - low) / (high - low)
    return min(1.0, max(0.0, scaled))


def denormalize(value: float, bounds: Tuple[float, float]) -> float:
    low, high = bounds
    if value is None or math.isnan(value):
        value = MIDPOINT
    clamped = min(1.0, max(0.0, float(value)))
    return low + clamped * (high - low)


def normalize_features(features: Mapping[str, Any]) -> List[float]:
    """Normalized input vector in ``FEATURE_NAMES`` order."""
    return [normalize(features.get(name), FEATURE_RANGES[name]) for name in FEATURE_NAMES]


def normalize_target(price_change: float) -> float:
    return normalize(price_change, PRICE_CHANGE_RANGE)


def denormalize_target(value: float) -> float:
    return denormalize(value, PRICE_CHANGE_RANGE)


def build_matrix(points: Sequence[Any]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Build (X, y) from labeled feature points.

    Args:
        points: Objects exposing the feature attributes and ``future_price_change``.

    Returns:
        Normalized feature matrix and normalized target vector.
    """
    rows = [
        normalize_features({name: getattr(p, name) for name in FEATURE_NAMES})
        for p in points
    ]
    targets = [normalize_target(p.future_price_change) for p in points]
    X = np.asarray(rows, dtype=float).reshape(len(rows), len(FEATURE_NAMES))
    y = np.asarray(targets, dtype=float)
    return X, y
