"""Input checks shared by the indicator functions."""

from __future__ import annotations

import math
import numbers
from collections.abc import Sequence
from typing import Any, List

import numpy as np

from ..exceptions import IndicatorInputError


def validate_series(values: Any, name: str = "prices") -> List[float]:
    """
    Coerce a numeric sequence to a list of floats.

    Raises:
        IndicatorInputError: If ``values`` is not a sequence, or any element is
            not a finite real number.
    """
    if isinstance(values, (str, bytes)) or not isinstance(values, (Sequence, np.ndarray)):
        raise IndicatorInputError(
            f"{name} must be a sequence of numbers, got {type(values).__name__}"
        )

    series: List[float] = []
    for i, value in enumerate(values):
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise IndicatorInputError(f"{name}[{i}] is not numeric: {value!r}")
        as_float = float(value)
        if not math.isfinite(as_float):
            raise IndicatorInputError(f"{name}[{i}] is not finite: {value!r}")
        series.append(as_float)
    return series


def validate_period(period: Any, name: str = "period") -> int:
    """Reject non-integer or non-positive window lengths."""
    if isinstance(period, bool) or not isinstance(period, numbers.Integral) or period < 1:
        raise IndicatorInputError(f"{name} must be a positive integer, got {period!r}")
    return int(period)


def validate_multiplier(multiplier: Any) -> float:
    if isinstance(multiplier, bool) or not isinstance(multiplier, numbers.Real):
        raise IndicatorInputError(f"multiplier must be numeric, got {multiplier!r}")
    if not math.isfinite(float(multiplier)) or multiplier < 0:
        raise IndicatorInputError(f"multiplier must be finite and >= 0, got {multiplier!r}")
    return float(multiplier)
