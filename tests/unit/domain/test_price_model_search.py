"""
Unit tests for the price-change model and hyperparameter search.

Tests:
- Fit/predict in percent units
- Feature importance by ablation
- Positional split sizes
- Search fallback when the resource check fails
- Seeded search reproducibility
"""

import pytest

from crosswatch.domain.ml import (
    DEFAULT_HYPERPARAMETERS,
    SEARCH_SPACE,
    HyperparameterSearch,
    Hyperparameters,
    PriceChangeModel,
    split_by_position,
)
from crosswatch.domain.ml.features import FEATURE_NAMES, PRICE_CHANGE_RANGE
from crosswatch.domain.ml.hyperparameter_search import HIDDEN_LAYER_CHOICES


class TestPriceChangeModel:
    """Tests for PriceChangeModel."""

    @pytest.fixture
    def fitted(self, point_factory) -> PriceChangeModel:
        return PriceChangeModel(Hyperparameters(), random_state=0).fit(point_factory(80))

    def test_predictions_within_target_range(self, fitted: PriceChangeModel) -> None:
        low, high = PRICE_CHANGE_RANGE
        value = fitted.predict_change({"ema_diff": 2.0, "rsi": 60.0})
        assert low <= value <= high

    def test_evaluate(self, fitted: PriceChangeModel, point_factory) -> None:
        metrics = fitted.evaluate(point_factory(20, seed=99))
        assert metrics.sample_count == 20
        assert 0.0 <= metrics.direction_accuracy <= 1.0
        assert metrics.mean_absolute_error >= 0.0

    def test_feature_importance_covers_every_feature(self, fitted: PriceChangeModel, point_factory) -> None:
        importance = fitted.feature_importance(point_factory(20, seed=5))
        assert set(importance) == set(FEATURE_NAMES)

    def test_empty_evaluation(self, fitted: PriceChangeModel) -> None:
        assert fitted.evaluate([]).sample_count == 0
        assert fitted.feature_importance([]) == {name: 0.0 for name in FEATURE_NAMES}

    def test_hyperparameters_roundtrip(self) -> None:
        params = Hyperparameters(hidden_layers=(32, 16), learning_rate=0.05, activation="tanh", max_iter=500, tol=0.01)
        assert Hyperparameters.from_dict(params.to_dict()) == params


class TestSplitByPosition:
    """Tests for split_by_position."""

    def test_eighty_twenty(self) -> None:
        train, test = split_by_position(list(range(100)), 0.2)
        assert len(train) == 80
        assert len(test) == 20
        assert test[0] == 80

    def test_holdout_rounds_up(self) -> None:
        train, holdout = split_by_position(list(range(10)), 0.25)
        assert len(holdout) == 3
        assert len(train) == 7


class TestHyperparameterSearch:
    """Tests for HyperparameterSearch."""

    def test_search_space_matches_choices(self) -> None:
        assert set(SEARCH_SPACE["hidden_layers"]) == set(HIDDEN_LAYER_CHOICES)
        assert (16, 8) in HIDDEN_LAYER_CHOICES.values()

    def test_guard_failure_uses_default(self, point_factory) -> None:
        search = HyperparameterSearch(n_trials=5, seed=1, resource_check=lambda: False)
        result = search.run(point_factory(60), symbol="BTCUSDT")

        assert result.used_default
        assert result.best == DEFAULT_HYPERPARAMETERS
        assert result.skipped_trials == 5
        assert result.completed_trials == 0

    def test_guard_trip_mid_search_skips_rest(self, point_factory) -> None:
        calls = iter([True, False])
        search = HyperparameterSearch(n_trials=4, seed=2, resource_check=lambda: next(calls, False))
        result = search.run(point_factory(60))

        assert len(result.trials) == 1
        assert result.skipped_trials == 3

    def test_completed_search_picks_best(self, point_factory) -> None:
        search = HyperparameterSearch(n_trials=3, seed=3)
        result = search.run(point_factory(60))

        assert not result.used_default
        assert result.completed_trials == 3
        assert result.best_score == max(t.score for t in result.trials)

    def test_seeded_search_is_reproducible(self, point_factory) -> None:
        points = point_factory(60)
        first = HyperparameterSearch(n_trials=2, seed=11).run(points)
        second = HyperparameterSearch(n_trials=2, seed=11).run(points)
        assert [t.hyperparameters for t in first.trials] == [t.hyperparameters for t in second.trials]
