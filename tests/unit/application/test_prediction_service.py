"""
Unit tests for PredictionService and ModelCache.

Tests:
- No model → no prediction
- Bounds and confidence from the version's stored std
- Cache FIFO eviction and invalidation
- Ensemble of identical members
- Ensemble recency weighting and dispersion
"""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from crosswatch.application.prediction_service import ModelCache, PredictionService, confidence_score
from crosswatch.domain.interfaces.model_registry import ModelVersion
from crosswatch.domain.ml import Hyperparameters, PerformanceMetrics, PriceChangeModel
from crosswatch.infrastructure.adapters.file_model_registry import FileModelRegistry

METRICS = PerformanceMetrics(1.0, 0.6, 0.2, 0.5, 20)
FEATURES = {"ema_diff": 1.2, "rsi": 61.0, "close": 100.0, "volume": 5e5}


@pytest.fixture
def model(point_factory) -> PriceChangeModel:
    return PriceChangeModel(Hyperparameters(hidden_layers=(8,), max_iter=200), random_state=0).fit(point_factory(40))


@pytest.fixture
def registry(tmp_path) -> FileModelRegistry:
    return FileModelRegistry(tmp_path / "models", clock=lambda: datetime(2026, 10, 19, tzinfo=timezone.utc))


def stub_version(symbol: str, version_id: str) -> ModelVersion:
    return ModelVersion(symbol, version_id, Hyperparameters(), [], METRICS)


class ConstantModel:
    def __init__(self, value: float):
        self.value = value

    def predict_change(self, features) -> float:
        return self.value


class StubRegistry:
    """Serves fixed versions, newest first."""

    def __init__(self, versions):
        self.versions = {v.version_id: v for v in versions}

    async def list_versions(self, symbol):
        return list(self.versions)

    async def load_version(self, symbol, version_id=None):
        return self.versions.get(version_id)


class TestConfidenceScore:
    """Tests for confidence_score."""

    @pytest.mark.parametrize("prediction,std,expected", [
        (0.0, 1.0, 0.0),
        (1.0, 0.5, 50.0),
        (-1.0, 0.5, 50.0),
        (10.0, 0.0, 100.0),
    ])
    def test_values(self, prediction, std, expected) -> None:
        assert confidence_score(prediction, std) == pytest.approx(expected)


class TestModelCache:
    """Tests for ModelCache."""

    def test_oldest_inserted_evicted_first(self) -> None:
        cache = ModelCache(max_size=2)
        cache.put(stub_version("BTCUSDT", "v1"))
        cache.put(stub_version("BTCUSDT", "v2"))
        assert cache.get("BTCUSDT", "v1") is not None  # reads do not refresh order

        cache.put(stub_version("BTCUSDT", "v3"))

        assert cache.keys() == [("BTCUSDT", "v2"), ("BTCUSDT", "v3")]
        assert cache.get("BTCUSDT", "v1") is None
        assert (cache.hits, cache.misses) == (1, 1)

    def test_invalidate_symbol(self) -> None:
        cache = ModelCache()
        cache.put(stub_version("BTCUSDT", "v1"))
        cache.put(stub_version("ETHUSDT", "v1"))

        cache.invalidate("BTCUSDT")
        assert cache.keys() == [("ETHUSDT", "v1")]

        cache.invalidate()
        assert len(cache) == 0


class TestPredict:
    """Tests for predict."""

    @pytest.mark.asyncio
    async def test_no_model(self, registry) -> None:
        service = PredictionService(registry)
        assert await service.predict("BTCUSDT", FEATURES) is None

    @pytest.mark.asyncio
    async def test_active_version(self, registry, model) -> None:
        saved = await registry.save_version("BTCUSDT", model, METRICS)
        service = PredictionService(registry)

        prediction = await service.predict("BTCUSDT", FEATURES)

        assert prediction.version == saved.version_id
        assert prediction.predicted_change == pytest.approx(model.predict_change(FEATURES))
        assert prediction.lower == pytest.approx(prediction.predicted_change - 1.96 * 0.5)
        assert prediction.upper == pytest.approx(prediction.predicted_change + 1.96 * 0.5)
        assert prediction.confidence == pytest.approx(confidence_score(prediction.predicted_change, 0.5))
        assert prediction.ensemble_versions == []
        assert prediction.to_dict()["symbol"] == "BTCUSDT"

    @pytest.mark.asyncio
    async def test_second_call_hits_cache(self, registry, model) -> None:
        await registry.save_version("BTCUSDT", model, METRICS)
        service = PredictionService(registry)

        await service.predict("BTCUSDT", FEATURES)
        await service.predict("BTCUSDT", FEATURES)

        assert service.cache.hits == 1
        assert len(service.cache) == 1

    @pytest.mark.asyncio
    async def test_unknown_version(self, registry, model) -> None:
        await registry.save_version("BTCUSDT", model, METRICS)
        service = PredictionService(registry)
        assert await service.predict("BTCUSDT", FEATURES, version_id="v20200101T000000000000Z") is None


class TestEnsemble:
    """Tests for predict_ensemble."""

    @pytest.mark.asyncio
    async def test_identical_members(self, registry, model) -> None:
        ids = [(await registry.save_version("BTCUSDT", model, METRICS)).version_id for _ in range(3)]
        service = PredictionService(registry, ensemble_size=5)

        prediction = await service.predict_ensemble("BTCUSDT", FEATURES)

        single = model.predict_change(FEATURES)
        assert prediction.predicted_change == pytest.approx(single)
        assert prediction.std_dev == 0.0
        assert prediction.agreement == 1.0
        assert prediction.confidence == 100.0
        assert prediction.ensemble_versions == list(reversed(ids))
        assert prediction.version == ids[-1]
        assert prediction.upper - prediction.lower == pytest.approx(2 * 1.96 * 0.5)

    @pytest.mark.asyncio
    async def test_limited_to_ensemble_size(self, registry, model) -> None:
        for _ in range(4):
            await registry.save_version("BTCUSDT", model, METRICS)
        service = PredictionService(registry, ensemble_size=2)

        prediction = await service.predict_ensemble("BTCUSDT", FEATURES)
        assert len(prediction.ensemble_versions) == 2

    @pytest.mark.asyncio
    async def test_default_mode(self, registry, model) -> None:
        await registry.save_version("BTCUSDT", model, METRICS)
        service = PredictionService(registry, use_ensemble=True)

        prediction = await service.predict("BTCUSDT", FEATURES)
        assert prediction.agreement == 1.0

    @pytest.mark.asyncio
    async def test_no_versions(self, registry) -> None:
        service = PredictionService(registry)
        assert await service.predict_ensemble("BTCUSDT", FEATURES) is None

    @pytest.mark.asyncio
    async def test_newest_member_weighs_most(self) -> None:
        newest = replace(stub_version("BTCUSDT", "v3"), model=ConstantModel(3.0))
        oldest = replace(
            stub_version("BTCUSDT", "v2"),
            model=ConstantModel(1.0),
            performance=replace(METRICS, std_dev=2.0),
        )
        service = PredictionService(StubRegistry([newest, oldest]), ensemble_size=5)

        prediction = await service.predict_ensemble("BTCUSDT", FEATURES)

        # weights 2:1 → (2*3 + 1*1) / 3
        assert prediction.predicted_change == pytest.approx(7 / 3)
        assert prediction.std_dev == pytest.approx(1.0)
        assert prediction.agreement == pytest.approx(4 / 7)
        assert prediction.confidence == pytest.approx(400 / 7)
        # stored std weighted the same way: (2*0.5 + 1*2.0) / 3
        assert prediction.upper - prediction.lower == pytest.approx(2 * 1.96 * 1.0)
        assert prediction.ensemble_versions == ["v3", "v2"]
        assert prediction.version == "v3"

    @pytest.mark.asyncio
    async def test_wide_disagreement_floors_at_zero(self) -> None:
        members = [
            replace(stub_version("BTCUSDT", "v2"), model=ConstantModel(1.0)),
            replace(stub_version("BTCUSDT", "v1"), model=ConstantModel(-1.0)),
        ]
        service = PredictionService(StubRegistry(members))

        prediction = await service.predict_ensemble("BTCUSDT", FEATURES)

        assert prediction.predicted_change == pytest.approx(1 / 3)
        assert prediction.agreement == 0.0
        assert prediction.confidence == 0.0
