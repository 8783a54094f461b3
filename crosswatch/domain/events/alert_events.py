"""
Outbound events handed to the alert sink.

The core never formats human-readable text. It emits an ``AlertEvent`` whose
``kind`` tells the sink what the structured ``payload`` contains:

- crossover: symbol, direction, price, indicator_value, indicator_period,
  interval, difference_pct, candle_time and an optional prediction block
- newSymbol: symbol, volume, price, change_pct
- trainingComplete: trained, failed, insufficient, skipped, results
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from ...utils.timezone import now_utc


class EventKind(Enum):
    """Outbound event kinds."""
    CROSSOVER = "crossover"
    NEW_SYMBOL = "newSymbol"
    TRAINING_COMPLETE = "trainingComplete"


class CrossoverDirection(Enum):
    """Direction of a price/indicator crossover."""
    UP = "up"
    DOWN = "down"


@dataclass(frozen=True, slots=True)
class AlertEvent:
    """Structured event for the external notification sink."""
    kind: EventKind
    payload: Dict[str, Any]
    timestamp: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }
