"""
Random hyperparameter search using Optuna.

Draws a small, fixed number of configurations from a discrete space with
Optuna's ``RandomSampler`` (ask/tell), trains each on the first 70% of the
training split and scores it on the remaining 30%:

    score = direction_accuracy - 0.1 * mean_absolute_error

A resource check runs before every trial. When it fails, the remaining trials
are skipped. If no trial completes, the default configuration is returned.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import optuna
from optuna.samplers import RandomSampler
from optuna.trial import TrialState

from ...utils.logging_setup import get_logger
from .evaluation import PerformanceMetrics
from .price_model import Hyperparameters, PriceChangeModel

logger = get_logger(__name__)

optuna.logging.set_verbosity(optuna.logging.WARNING)

# Hidden layer shapes are keyed by string because Optuna categoricals only
# accept scalar choices.
HIDDEN_LAYER_CHOICES: Dict[str, tuple] = {
    "8": (8,),
    "16": (16,),
    "32": (32,),
    "64": (64,),
    "16-8": (16, 8),
    "32-16": (32, 16),
    "64-32": (64, 32),
    "32-16-8": (32, 16, 8),
    "64-32-16": (64, 32, 16),
}

SEARCH_SPACE: Dict[str, List[Any]] = {
    "hidden_layers": list(HIDDEN_LAYER_CHOICES),
    "learning_rate": [0.01, 0.05, 0.1, 0.2],
    "activation": ["logistic", "relu", "tanh"],
    "max_iter": [500, 1000, 2000],
    "tol": [0.001, 0.005, 0.01],
}

DEFAULT_HYPERPARAMETERS = Hyperparameters()

TRIAL_VALIDATION_FRACTION = 0.3


@dataclass
class TrialResult:
    """Outcome of a single trial."""
    number: int
    hyperparameters: Hyperparameters
    score: Optional[float] = None
    metrics: Optional[PerformanceMetrics] = None
    error: Optional[str] = None


@dataclass
class SearchResult:
    """Outcome of a search run."""
    best: Hyperparameters
    best_score: Optional[float]
    used_default: bool
    trials: List[TrialResult] = field(default_factory=list)
    skipped_trials: int = 0

    @property
    def completed_trials(self) -> int:
        return sum(1 for t in self.trials if t.score is not None)


def split_by_position(points: Sequence[Any], holdout_fraction: float) -> tuple:
    """
    Split without shuffling so the holdout is strictly later in time.

    The holdout receives ``ceil(len * holdout_fraction)`` points.
    """
    holdout = math.ceil(len(points) * holdout_fraction)
    cut = len(points) - holdout
    return list(points[:cut]), list(points[cut:])


class HyperparameterSearch:
    """
    Random search over ``SEARCH_SPACE``.

    Example:
        search = HyperparameterSearch(n_trials=5, resource_check=guard.has_headroom)
        result = search.run(training_points)
        model = PriceChangeModel(result.best).fit(training_points)
    """

    def __init__(
        self,
        n_trials: int = 5,
        seed: Optional[int] = None,
        resource_check: Optional[Callable[[], bool]] = None,
    ):
        """
        Args:
            n_trials: Number of random configurations to try.
            seed: Sampler and estimator seed. None keeps the search nondeterministic.
            resource_check: Returns False when memory is above the high-water mark.
        """
        self.n_trials = n_trials
        self.seed = seed
        self.resource_check = resource_check

    def _suggest(self, trial: optuna.Trial) -> Hyperparameters:
        return Hyperparameters(
            hidden_layers=HIDDEN_LAYER_CHOICES[
                trial.suggest_categorical("hidden_layers", SEARCH_SPACE["hidden_layers"])
            ],
            learning_rate=trial.suggest_categorical("learning_rate", SEARCH_SPACE["learning_rate"]),
            activation=trial.suggest_categorical("activation", SEARCH_SPACE["activation"]),
            max_iter=trial.suggest_categorical("max_iter", SEARCH_SPACE["max_iter"]),
            tol=trial.suggest_categorical("tol", SEARCH_SPACE["tol"]),
        )

    def run(self, points: Sequence[Any], symbol: str = "") -> SearchResult:
        """
        Run the search over labeled training points (oldest first).

        Returns:
            SearchResult with the best configuration, or the default one when
            no trial completed.
        """
        fit_points, validation_points = split_by_position(points, TRIAL_VALIDATION_FRACTION)

        study = optuna.create_study(
            direction="maximize",
            sampler=RandomSampler(seed=self.seed),
        )

        trials: List[TrialResult] = []
        skipped = 0

        for i in range(self.n_trials):
            if self.resource_check is not None and not self.resource_check():
                skipped = self.n_trials - i
                logger.warning(
                    f"{symbol}: memory above high-water mark, skipping {skipped} remaining trial(s)",
                    extra={"data": {"symbol": symbol, "skipped_trials": skipped}},
                )
                break

            trial = study.ask()
            params = self._suggest(trial)
            result = TrialResult(number=trial.number, hyperparameters=params)

            try:
                model = PriceChangeModel(params, random_state=self.seed).fit(fit_points)
                metrics = model.evaluate(validation_points)
            except (ValueError, ArithmeticError, MemoryError) as e:
                study.tell(trial, state=TrialState.FAIL)
                result.error = str(e)
                logger.warning(f"{symbol}: trial {trial.number} failed: {e}")
                trials.append(result)
                continue

            score = metrics.score
            if not math.isfinite(score):
                study.tell(trial, state=TrialState.FAIL)
                result.error = "non-finite score"
                trials.append(result)
                continue

            study.tell(trial, score)
            result.score = score
            result.metrics = metrics
            trials.append(result)
            logger.debug(
                f"{symbol}: trial {trial.number} score={score:.4f}",
                extra={"data": {"symbol": symbol, "params": params.to_dict(), "score": score}},
            )

        completed = [t for t in trials if t.score is not None]
        if not completed:
            logger.warning(f"{symbol}: no hyperparameter trial completed, using default configuration")
            return SearchResult(
                best=DEFAULT_HYPERPARAMETERS,
                best_score=None,
                used_default=True,
                trials=trials,
                skipped_trials=skipped,
            )

        best = max(completed, key=lambda t: t.score)
        logger.info(
            f"{symbol}: best trial {best.number} score={best.score:.4f}",
            extra={"data": {"symbol": symbol, "best": best.hyperparameters.to_dict()}},
        )
        return SearchResult(
            best=best.hyperparameters,
            best_score=best.score,
            used_default=False,
            trials=trials,
            skipped_trials=skipped,
        )
