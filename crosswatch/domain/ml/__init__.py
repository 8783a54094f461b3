"""ML primitives: feature points, normalization, metrics, model, search."""

from .evaluation import PerformanceMetrics, evaluate_predictions
from .feature_point import DERIVED_FEATURES, FeaturePoint
from .features import (
    FEATURE_NAMES,
    FEATURE_RANGES,
    PRICE_CHANGE_RANGE,
    denormalize,
    normalize,
    normalize_features,
)
from .hyperparameter_search import (
    DEFAULT_HYPERPARAMETERS,
    SEARCH_SPACE,
    HyperparameterSearch,
    SearchResult,
    split_by_position,
)
from .price_model import Hyperparameters, PriceChangeModel

__all__ = [
    "PerformanceMetrics",
    "evaluate_predictions",
    "DERIVED_FEATURES",
    "FeaturePoint",
    "FEATURE_NAMES",
    "FEATURE_RANGES",
    "PRICE_CHANGE_RANGE",
    "denormalize",
    "normalize",
    "normalize_features",
    "DEFAULT_HYPERPARAMETERS",
    "SEARCH_SPACE",
    "HyperparameterSearch",
    "SearchResult",
    "split_by_position",
    "Hyperparameters",
    "PriceChangeModel",
]
