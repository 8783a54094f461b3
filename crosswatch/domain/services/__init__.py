"""Pure domain services."""

from .crossover_policy import (
    AlertState,
    CrossoverDecision,
    CrossoverPolicy,
    Side,
    side_of,
)

__all__ = [
    "AlertState",
    "CrossoverDecision",
    "CrossoverPolicy",
    "Side",
    "side_of",
]
