"""
Crossover/alert policy.

Decides whether two consecutive (price, indicator) pairs describe a crossover
and whether the per-symbol cooldown allows an alert for it.

Rules:
- side = ABOVE when price > indicator, otherwise BELOW (ties are below-or-equal)
- a flip is a change between the previous pair's side and the current pair's side
- an alert fires only for a flip whose time since the last alert is >= cooldown
- the stored side always follows the latest observed side, fired or not
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..events.alert_events import CrossoverDirection


class Side(Enum):
    """Where price sits relative to the indicator."""
    ABOVE = "above"
    BELOW = "below"


def side_of(price: float, indicator: float) -> Side:
    return Side.ABOVE if price > indicator else Side.BELOW


@dataclass
class AlertState:
    """Per-symbol alert bookkeeping, owned by the symbol's session."""
    side: Optional[Side] = None
    last_alert_ts: Optional[float] = None


@dataclass(frozen=True)
class CrossoverDecision:
    """Outcome of one policy evaluation."""
    fired: bool
    flipped: bool
    side: Side
    direction: Optional[CrossoverDirection] = None
    difference_pct: float = 0.0
    suppressed_by_cooldown: bool = False


class CrossoverPolicy:
    """
    Stateless decision function over an externally owned ``AlertState``.

    Args:
        cooldown_sec: Minimum seconds between two alerts for one symbol.
    """

    def __init__(self, cooldown_sec: float = 900.0):
        self.cooldown_sec = cooldown_sec

    def cooldown_elapsed(self, state: AlertState, now: float) -> bool:
        if state.last_alert_ts is None:
            return True
        return (now - state.last_alert_ts) >= self.cooldown_sec

    def evaluate(
        self,
        state: AlertState,
        prev_price: float,
        prev_indicator: float,
        curr_price: float,
        curr_indicator: float,
        now: float,
    ) -> CrossoverDecision:
        """
        Evaluate a crossover and update ``state`` in place.

        The state update always happens before the caller emits anything
        referencing it.
        """
        prev_side = side_of(prev_price, prev_indicator)
        curr_side = side_of(curr_price, curr_indicator)
        flipped = curr_side != prev_side

        difference_pct = 0.0
        if curr_indicator != 0:
            difference_pct = (curr_price - curr_indicator) / curr_indicator * 100

        if flipped and self.cooldown_elapsed(state, now):
            state.last_alert_ts = now
            state.side = curr_side
            direction = CrossoverDirection.UP if curr_side is Side.ABOVE else CrossoverDirection.DOWN
            return CrossoverDecision(
                fired=True,
                flipped=True,
                side=curr_side,
                direction=direction,
                difference_pct=difference_pct,
            )

        state.side = curr_side
        return CrossoverDecision(
            fired=False,
            flipped=flipped,
            side=curr_side,
            difference_pct=difference_pct,
            suppressed_by_cooldown=flipped,
        )
