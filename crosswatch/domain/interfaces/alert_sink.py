"""Port for the external notification channel."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..events.alert_events import AlertEvent


@runtime_checkable
class AlertSink(Protocol):
    """Receives structured events; formatting and delivery are the sink's business."""

    async def emit(self, event: AlertEvent) -> None:
        ...
