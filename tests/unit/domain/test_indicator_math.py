"""
Unit tests for the indicator functions.

Tests:
- EMA seeding, constant series, short series
- RSI monotonic extremes and neutral cases
- Bollinger band ordering and warmup fallback
- MACD histogram identity and short input
- ATR averaging
- Input validation
"""

import math

import numpy as np
import pytest

from crosswatch.domain.exceptions import IndicatorInputError, ValidationError
from crosswatch.domain.indicators import (
    NEUTRAL_RSI,
    calculate_atr,
    calculate_bollinger,
    calculate_ema,
    calculate_macd,
    calculate_rsi,
    next_ema,
    smoothing_factor,
    true_ranges,
)


class TestEMA:
    """Tests for calculate_ema."""

    def test_constant_series_stays_constant(self) -> None:
        """EMA of a constant series equals the constant everywhere."""
        assert calculate_ema([5.0] * 50, 10) == [5.0] * 50

    def test_length_matches_input(self) -> None:
        prices = list(np.linspace(1, 2, 37))
        assert len(calculate_ema(prices, 10)) == 37

    def test_seed_is_simple_average(self) -> None:
        """Index period-1 holds the SMA of the first period prices."""
        prices = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
        ema = calculate_ema(prices, 3)
        assert ema[2] == pytest.approx(2.0)
        assert ema[:2] == [1.0, 1.0]

    def test_recurrence(self) -> None:
        prices = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
        ema = calculate_ema(prices, 3)
        k = smoothing_factor(3)
        assert ema[3] == pytest.approx((4.0 - ema[2]) * k + ema[2])
        assert ema[5] == pytest.approx(next_ema(ema[4], 6.0, 3))

    def test_short_series_repeats_first_price(self) -> None:
        assert calculate_ema([3.0, 4.0, 5.0], 10) == [3.0, 3.0, 3.0]

    def test_empty_series(self) -> None:
        assert calculate_ema([], 5) == []

    def test_accepts_numpy_array(self) -> None:
        result = calculate_ema(np.array([2.0] * 20), 5)
        assert result[-1] == pytest.approx(2.0)


class TestRSI:
    """Tests for calculate_rsi."""

    def test_strictly_increasing_is_100(self) -> None:
        rsi = calculate_rsi([float(p) for p in range(1, 31)], 14)
        assert rsi[-1] == pytest.approx(100.0)

    def test_strictly_decreasing_is_0(self) -> None:
        rsi = calculate_rsi([float(p) for p in range(30, 0, -1)], 14)
        assert rsi[-1] == pytest.approx(0.0)

    def test_flat_series_is_neutral(self) -> None:
        rsi = calculate_rsi([10.0] * 30, 14)
        assert rsi[-1] == NEUTRAL_RSI

    def test_short_series_is_all_neutral(self) -> None:
        assert calculate_rsi([1.0, 2.0, 3.0], 14) == [NEUTRAL_RSI] * 3

    def test_values_in_range(self) -> None:
        rng = np.random.default_rng(42)
        prices = list(100 + np.cumsum(rng.normal(0, 1, 200)))
        rsi = calculate_rsi(prices, 14)
        assert len(rsi) == len(prices)
        assert all(0.0 <= v <= 100.0 for v in rsi)


class TestBollinger:
    """Tests for calculate_bollinger."""

    def test_band_ordering(self) -> None:
        rng = np.random.default_rng(1)
        prices = list(50 + np.cumsum(rng.normal(0, 0.5, 120)))
        bands = calculate_bollinger(prices, 20, 2.0)
        for upper, middle, lower in zip(bands.upper, bands.middle, bands.lower):
            assert upper >= middle >= lower

    def test_warmup_uses_ten_percent_fallback(self) -> None:
        prices = [100.0 + i for i in range(25)]
        bands = calculate_bollinger(prices, 20)
        assert bands.upper[0] == pytest.approx(110.0)
        assert bands.lower[0] == pytest.approx(90.0)
        assert bands.middle[18] == 100.0
        assert len(bands.upper) == len(prices)

    def test_population_std(self) -> None:
        prices = [1.0, 2.0, 3.0, 4.0]
        bands = calculate_bollinger(prices, 4, 1.0)
        assert bands.middle[-1] == pytest.approx(2.5)
        assert bands.upper[-1] - bands.middle[-1] == pytest.approx(math.sqrt(1.25))

    def test_constant_series_has_zero_width(self) -> None:
        bands = calculate_bollinger([10.0] * 30, 20)
        assert bands.width_at(-1) == 0.0

    def test_negative_multiplier_rejected(self) -> None:
        with pytest.raises(IndicatorInputError):
            calculate_bollinger([1.0] * 30, 20, -1.0)


class TestMACD:
    """Tests for calculate_macd."""

    def test_histogram_is_macd_minus_signal(self) -> None:
        rng = np.random.default_rng(3)
        prices = list(20 + np.cumsum(rng.normal(0, 0.2, 100)))
        result = calculate_macd(prices)
        for m, s, h in zip(result.macd, result.signal, result.histogram):
            assert h == m - s

    def test_short_input_is_zeros(self) -> None:
        result = calculate_macd([1.0] * 10)
        assert result.macd == [0.0] * 10
        assert result.signal == [0.0] * 10
        assert result.histogram == [0.0] * 10

    def test_line_zero_before_slow_seed(self) -> None:
        prices = [float(i) for i in range(1, 41)]
        result = calculate_macd(prices, 12, 26, 9)
        assert all(v == 0.0 for v in result.macd[:25])
        assert result.macd[-1] > 0


class TestATR:
    """Tests for calculate_atr."""

    def test_mean_of_recent_true_ranges(self) -> None:
        candles = [{"high": 11.0, "low": 9.0, "close": 10.0} for _ in range(20)]
        assert calculate_atr(candles, 14) == pytest.approx(2.0)

    def test_gap_counts_in_true_range(self) -> None:
        candles = [
            {"high": 10.0, "low": 9.0, "close": 9.5},
            {"high": 13.0, "low": 12.0, "close": 12.5},
        ]
        assert true_ranges(candles) == [pytest.approx(3.5)]

    def test_short_input_is_zero(self) -> None:
        assert calculate_atr([{"high": 2.0, "low": 1.0, "close": 1.5}] * 5, 14) == 0.0


class TestIndicatorValidation:
    """Malformed input is rejected with IndicatorInputError."""

    @pytest.mark.parametrize("bad", [[1.0, "x"], [1.0, float("nan")], [True, 2.0], "123", None])
    def test_bad_series(self, bad) -> None:
        with pytest.raises(IndicatorInputError):
            calculate_ema(bad, 3)

    @pytest.mark.parametrize("period", [0, -3, 2.5, True])
    def test_bad_period(self, period) -> None:
        with pytest.raises(IndicatorInputError):
            calculate_rsi([1.0] * 20, period)

    def test_is_validation_error_and_value_error(self) -> None:
        with pytest.raises(ValidationError):
            calculate_ema([float("inf")], 3)
        with pytest.raises(ValueError):
            calculate_ema([float("inf")], 3)
