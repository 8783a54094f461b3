"""Alert sink that writes structured events to the system log."""

from __future__ import annotations

from typing import List

from ...domain.events.alert_events import AlertEvent
from ...utils.logging_setup import get_logger

logger = get_logger(__name__)


class LoggingAlertSink:
    """
    AlertSink that logs each event as structured data.

    Keeps the most recent events in memory for inspection.
    """

    def __init__(self, history_size: int = 100):
        self._history_size = history_size
        self.history: List[AlertEvent] = []

    async def emit(self, event: AlertEvent) -> None:
        payload = event.to_dict()
        logger.info(
            f"ALERT {event.kind.value} {event.payload.get('symbol', '')}".rstrip(),
            extra={"data": payload},
        )
        self.history.append(event)
        if len(self.history) > self._history_size:
            del self.history[: len(self.history) - self._history_size]
