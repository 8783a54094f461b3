"""Unit tests for MemoryGuard and the logging alert sink."""

import pytest

from crosswatch.domain.events.alert_events import AlertEvent, EventKind
from crosswatch.infrastructure.adapters.log_alert_sink import LoggingAlertSink
from crosswatch.infrastructure.monitoring import MemoryGuard
from crosswatch.infrastructure.monitoring.resource_guard import process_rss_mb


class TestMemoryGuard:
    """Tests for MemoryGuard."""

    def test_headroom_below_high_water(self) -> None:
        guard = MemoryGuard(high_water_mb=900, warning_mb=600, sampler=lambda: 100.0)
        assert guard.has_headroom()
        assert guard.trips == 0

    def test_warning_level_still_has_headroom(self) -> None:
        guard = MemoryGuard(high_water_mb=900, warning_mb=600, sampler=lambda: 700.0)
        assert guard.has_headroom()

    def test_trips_above_high_water(self) -> None:
        guard = MemoryGuard(high_water_mb=900, sampler=lambda: 950.0)
        assert not guard.has_headroom()
        assert guard.trips == 1

    def test_collection_can_recover(self) -> None:
        readings = iter([950.0, 500.0])
        guard = MemoryGuard(high_water_mb=900, sampler=lambda: next(readings))
        assert guard.has_headroom()
        assert guard.peak_mb == 950.0

    def test_snapshot(self) -> None:
        guard = MemoryGuard(high_water_mb=900, sampler=lambda: 321.0)
        snap = guard.snapshot()
        assert snap["usage_mb"] == 321.0
        assert snap["high_water_mb"] == 900

    def test_real_sampler(self) -> None:
        assert process_rss_mb() > 0


class TestLoggingAlertSink:
    """Tests for LoggingAlertSink."""

    @pytest.mark.asyncio
    async def test_keeps_bounded_history(self) -> None:
        sink = LoggingAlertSink(history_size=2)
        for i in range(3):
            await sink.emit(AlertEvent(kind=EventKind.NEW_SYMBOL, payload={"symbol": f"S{i}USDT"}))
        assert [e.payload["symbol"] for e in sink.history] == ["S1USDT", "S2USDT"]
