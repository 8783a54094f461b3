"""
Unit tests for deferred jobs: scheduler, label backfill, accuracy tracking.
"""

import json
from dataclasses import replace

import pytest

from crosswatch.application.deferred_tasks import DeferredTaskScheduler
from crosswatch.application.label_backfill import LabelBackfillService
from crosswatch.application.prediction_tracker import PredictionAccuracyTracker
from crosswatch.infrastructure.stores.training_data_store import TrainingDataStore

NOW = 1_760_500_000.0


@pytest.fixture
def store(tmp_path) -> TrainingDataStore:
    return TrainingDataStore(tmp_path / "data")


class TestDeferredTaskScheduler:
    """Tests for DeferredTaskScheduler."""

    @pytest.mark.asyncio
    async def test_runs_after_delay(self) -> None:
        scheduler = DeferredTaskScheduler()
        ran = []

        async def job():
            ran.append(True)

        scheduler.schedule(0.01, job)
        assert scheduler.pending == 1
        await scheduler.wait_all()

        assert ran == [True]
        assert scheduler.completed == 1
        assert scheduler.pending == 0

    @pytest.mark.asyncio
    async def test_failure_is_counted(self) -> None:
        scheduler = DeferredTaskScheduler()

        async def job():
            raise RuntimeError("boom")

        scheduler.schedule(-5, job)
        await scheduler.wait_all()

        assert scheduler.failed == 1
        assert scheduler.completed == 0

    @pytest.mark.asyncio
    async def test_cancel_all(self) -> None:
        scheduler = DeferredTaskScheduler()
        ran = []

        async def job():
            ran.append(True)

        task = scheduler.schedule(3600, job)
        await scheduler.cancel_all()

        assert task.cancelled()
        assert ran == []
        assert scheduler.pending == 0


class TestLabelBackfill:
    """Tests for LabelBackfillService."""

    @pytest.mark.asyncio
    async def test_resolve_writes_label(self, store, fake_provider, point_factory) -> None:
        point = replace(point_factory(1, labeled=False)[0], close=100.0)
        store.append(point)
        fake_provider.prices["BTCUSDT"] = 98.0
        service = LabelBackfillService(store, fake_provider, DeferredTaskScheduler())

        assert await service.resolve(point)

        assert store.labeled_points("BTCUSDT")[0].future_price_change == pytest.approx(-2.0)
        assert service.labeled == 1

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, store, fake_provider, point_factory) -> None:
        point = replace(point_factory(1, labeled=False)[0], close=100.0)
        store.append(point)
        fake_provider.prices["BTCUSDT"] = 101.0
        fake_provider.price_failures = 2
        service = LabelBackfillService(
            store, fake_provider, DeferredTaskScheduler(), max_attempts=3, retry_delay_sec=0
        )

        assert await service.resolve(point)
        assert store.pending_labels() == []

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, store, fake_provider, point_factory) -> None:
        point = point_factory(1, labeled=False)[0]
        store.append(point)
        fake_provider.prices["BTCUSDT"] = 101.0
        fake_provider.price_failures = 5
        service = LabelBackfillService(
            store, fake_provider, DeferredTaskScheduler(), max_attempts=2, retry_delay_sec=0
        )

        assert not await service.resolve(point)
        assert service.abandoned == 1
        assert store.pending_labels() == [point]

    @pytest.mark.asyncio
    async def test_schedule_uses_horizon(self, store, fake_provider, point_factory) -> None:
        point = replace(point_factory(1, labeled=False)[0], created_at=int(NOW * 1000), close=100.0)
        store.append(point)
        fake_provider.prices["BTCUSDT"] = 110.0
        scheduler = DeferredTaskScheduler()
        service = LabelBackfillService(store, fake_provider, scheduler, horizon_sec=0.01, clock=lambda: NOW)

        assert service.due_in(point) == pytest.approx(0.01)
        service.schedule(point)
        await scheduler.wait_all()

        assert store.labeled_points("BTCUSDT")[0].future_price_change == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_reschedule_pending_skips_overdue(self, store, fake_provider, point_factory) -> None:
        fresh, stale = point_factory(2, labeled=False)
        fresh = replace(fresh, created_at=int((NOW - 3600) * 1000))
        stale = replace(stale, created_at=int((NOW - 2 * 86400) * 1000))
        store.append(fresh)
        store.append(stale)
        scheduler = DeferredTaskScheduler()
        service = LabelBackfillService(store, fake_provider, scheduler, clock=lambda: NOW)

        try:
            assert service.reschedule_pending() == 1
            assert scheduler.pending == 1
        finally:
            await scheduler.cancel_all()


class TestPredictionAccuracyTracker:
    """Tests for PredictionAccuracyTracker."""

    @pytest.fixture
    def tracker(self, tmp_path, fake_provider) -> PredictionAccuracyTracker:
        return PredictionAccuracyTracker(
            tmp_path / "models" / "model_performance.json",
            fake_provider,
            DeferredTaskScheduler(),
            clock=lambda: NOW,
        )

    @pytest.mark.asyncio
    async def test_hits_and_misses(self, tracker, fake_provider) -> None:
        fake_provider.prices["BTCUSDT"] = 105.0

        assert await tracker.check("BTCUSDT", 100.0, 2.0, "v1") is True
        assert await tracker.check("BTCUSDT", 100.0, -1.0, "v2") is False

        stats = tracker.stats("BTCUSDT")
        assert stats["total"] == 2
        assert stats["correct"] == 1
        assert stats["accuracy"] == 0.5
        assert stats["last_version"] == "v2"
        assert stats["last_updated"] == NOW

    @pytest.mark.asyncio
    async def test_price_failure_is_not_counted(self, tracker) -> None:
        assert await tracker.check("ETHUSDT", 100.0, 1.0) is None
        assert tracker.stats() == {}

    @pytest.mark.asyncio
    async def test_record_schedules_check(self, tmp_path, fake_provider) -> None:
        scheduler = DeferredTaskScheduler()
        tracker = PredictionAccuracyTracker(
            tmp_path / "perf.json", fake_provider, scheduler, horizon_sec=0.01, clock=lambda: NOW
        )
        fake_provider.prices["BTCUSDT"] = 99.0

        tracker.record("BTCUSDT", 100.0, -0.5, "v1")
        await scheduler.wait_all()

        assert tracker.stats("BTCUSDT")["correct"] == 1

    @pytest.mark.asyncio
    async def test_save_and_load(self, tracker, fake_provider, tmp_path) -> None:
        fake_provider.prices["BTCUSDT"] = 105.0
        await tracker.check("BTCUSDT", 100.0, 2.0, "v1")
        tracker.save()

        path = tmp_path / "models" / "model_performance.json"
        assert json.loads(path.read_text())["BTCUSDT"]["total"] == 1

        fresh = PredictionAccuracyTracker(path, fake_provider, DeferredTaskScheduler())
        fresh.load()
        assert fresh.stats("BTCUSDT")["correct"] == 1

    def test_corrupt_file_starts_empty(self, tmp_path, fake_provider) -> None:
        path = tmp_path / "perf.json"
        path.write_text("{nope")
        tracker = PredictionAccuracyTracker(path, fake_provider, DeferredTaskScheduler())
        tracker.load()
        assert tracker.stats() == {}
