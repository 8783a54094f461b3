"""
Unit tests for the crossover/alert policy.

Tests:
- Side classification (ties count as below)
- Flip detection and direction
- Cooldown boundary
- State updates on suppressed flips
"""

import pytest

from crosswatch.domain.events.alert_events import CrossoverDirection
from crosswatch.domain.services.crossover_policy import AlertState, CrossoverPolicy, Side, side_of

T0 = 1_000_000.0


class TestSideOf:
    """Tests for side_of."""

    def test_above(self) -> None:
        assert side_of(10.5, 10.0) is Side.ABOVE

    def test_below(self) -> None:
        assert side_of(9.5, 10.0) is Side.BELOW

    def test_tie_is_below(self) -> None:
        assert side_of(10.0, 10.0) is Side.BELOW


class TestCrossoverPolicy:
    """Tests for CrossoverPolicy.evaluate."""

    @pytest.fixture
    def policy(self) -> CrossoverPolicy:
        return CrossoverPolicy(cooldown_sec=900)

    def test_upward_cross_fires(self, policy: CrossoverPolicy) -> None:
        state = AlertState()
        decision = policy.evaluate(state, 9.9, 10.0, 10.1, 10.0, now=T0)

        assert decision.fired
        assert decision.direction is CrossoverDirection.UP
        assert decision.difference_pct == pytest.approx(1.0)
        assert state.side is Side.ABOVE
        assert state.last_alert_ts == T0

    def test_downward_cross_fires(self, policy: CrossoverPolicy) -> None:
        state = AlertState()
        decision = policy.evaluate(state, 10.1, 10.0, 9.8, 10.0, now=T0)
        assert decision.fired
        assert decision.direction is CrossoverDirection.DOWN
        assert decision.difference_pct == pytest.approx(-2.0)

    def test_no_flip_no_alert(self, policy: CrossoverPolicy) -> None:
        state = AlertState()
        decision = policy.evaluate(state, 10.1, 10.0, 10.2, 10.0, now=T0)
        assert not decision.fired
        assert not decision.flipped
        assert not decision.suppressed_by_cooldown
        assert state.side is Side.ABOVE
        assert state.last_alert_ts is None

    def test_tie_to_above_is_a_flip(self, policy: CrossoverPolicy) -> None:
        state = AlertState()
        decision = policy.evaluate(state, 10.0, 10.0, 10.5, 10.0, now=T0)
        assert decision.fired
        assert decision.direction is CrossoverDirection.UP

    def test_second_flip_inside_cooldown_suppressed(self, policy: CrossoverPolicy) -> None:
        """A flip at T + cooldown - 1 is suppressed but still moves the side."""
        state = AlertState()
        assert policy.evaluate(state, 9.9, 10.0, 10.1, 10.0, now=T0).fired

        decision = policy.evaluate(state, 10.1, 10.0, 9.9, 10.0, now=T0 + 899)
        assert not decision.fired
        assert decision.suppressed_by_cooldown
        assert state.side is Side.BELOW
        assert state.last_alert_ts == T0

    def test_flip_at_exact_cooldown_fires(self, policy: CrossoverPolicy) -> None:
        state = AlertState()
        policy.evaluate(state, 9.9, 10.0, 10.1, 10.0, now=T0)

        decision = policy.evaluate(state, 10.1, 10.0, 9.9, 10.0, now=T0 + 900)
        assert decision.fired
        assert state.last_alert_ts == T0 + 900

    def test_zero_indicator_difference(self, policy: CrossoverPolicy) -> None:
        decision = policy.evaluate(AlertState(), -1.0, 0.0, 1.0, 0.0, now=T0)
        assert decision.difference_pct == 0.0

    def test_cooldown_elapsed_without_history(self, policy: CrossoverPolicy) -> None:
        assert policy.cooldown_elapsed(AlertState(), T0)
