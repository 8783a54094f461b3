"""Unit tests for IndicatorState and feature point derivation."""

import pytest

from crosswatch.domain.indicators import IndicatorState
from crosswatch.domain.ml.feature_builder import build_feature_point, model_inputs, volume_change


class TestIndicatorState:
    """Tests for IndicatorState."""

    def test_unseeded(self) -> None:
        state = IndicatorState(ema_period=5, retention=10)
        assert not state.seeded
        assert state.last_ema is None
        assert state.prev_ema is None
        assert state.provisional_ema(10.0) is None

    def test_recompute_sets_trailing_values(self, candle_factory) -> None:
        state = IndicatorState(ema_period=5, retention=10)
        candles = candle_factory([float(i) for i in range(1, 31)])
        state.recompute(candles)

        assert state.seeded
        assert len(state.ema_history) == 10
        assert state.last_close == 30.0
        assert state.prev_close == 29.0
        assert state.last_rsi == pytest.approx(100.0)
        assert state.last_bollinger is not None
        assert state.last_bollinger.upper >= state.last_bollinger.middle >= state.last_bollinger.lower
        assert state.last_atr > 0

    def test_provisional_ema_does_not_mutate(self, candle_factory) -> None:
        state = IndicatorState(ema_period=5, retention=10)
        state.recompute(candle_factory([10.0] * 10))
        before = list(state.ema_history)

        provisional = state.provisional_ema(16.0)

        assert provisional == pytest.approx(12.0)
        assert list(state.ema_history) == before

    def test_clear(self, candle_factory) -> None:
        state = IndicatorState(ema_period=5, retention=10)
        state.recompute(candle_factory([10.0] * 10))
        state.clear()
        assert not state.seeded
        assert state.last_close is None
        assert state.last_bollinger is None


class TestFeatureBuilder:
    """Tests for build_feature_point."""

    def test_volume_change(self, candle_factory) -> None:
        candles = candle_factory([1.0, 1.0])
        assert volume_change(candles) == 0.0
        assert volume_change(candles[:1]) == 0.0

    def test_point_matches_state(self, candle_factory) -> None:
        candles = candle_factory([100.0 + (i % 5) for i in range(60)])
        state = IndicatorState(ema_period=20, retention=40)
        state.recompute(candles)

        point = build_feature_point("ETHUSDT", candles, state, created_at=123)

        assert point.symbol == "ETHUSDT"
        assert point.timestamp == candles[-1].open_time
        assert point.created_at == 123
        assert point.ema == state.last_ema
        assert point.ema_diff == pytest.approx((point.close - point.ema) / point.ema * 100)
        assert point.bb_width == pytest.approx((point.bb_upper - point.bb_lower) / point.bb_middle)
        assert point.macd_hist == pytest.approx(point.macd - point.macd_signal)
        assert not point.labeled
        point.validate()

        inputs = model_inputs(point)
        assert set(inputs) == {"ema_diff", "rsi", "macd_hist", "bb_width", "volume", "volume_change", "atr"}
