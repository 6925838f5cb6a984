"""Ensemble-level score aggregation and quality analysis."""

import logging
import math
from typing import Any

from ensemble_conductor.core.config.ensemble_config import EnsembleScoringConfig
from ensemble_conductor.core.execution.scoring.types import ScoringState

logger = logging.getLogger(__name__)


class EnsembleScorer:
    """Aggregates per-step scores once all steps have run."""

    def __init__(self, config: EnsembleScoringConfig | None = None) -> None:
        self.config = config or EnsembleScoringConfig()

    def latest_scores(self, state: ScoringState) -> dict[str, float]:
        """Most recent score per agent, in first-scored order."""
        latest: dict[str, float] = {}
        for entry in state.score_history:
            latest[entry.agent] = entry.score
        return latest

    def aggregate(self, state: ScoringState) -> float | None:
        """Combine each agent's latest score using the configured method.

        Returns None when nothing was scored.
        """
        scores = self.latest_scores(state)
        if not scores:
            return None

        method = self.config.aggregation
        if method == "minimum":
            return min(scores.values())
        if method == "geometric_mean":
            if any(score <= 0 for score in scores.values()):
                return 0.0
            log_sum = sum(math.log(score) for score in scores.values())
            return math.exp(log_sum / len(scores))

        weights = self.config.weights or {}
        total_weight = sum(weights.get(agent, 1.0) for agent in scores)
        if total_weight <= 0:
            return 0.0
        weighted = sum(
            score * weights.get(agent, 1.0) for agent, score in scores.items()
        )
        return weighted / total_weight

    def calculate_quality_metrics(self, state: ScoringState) -> dict[str, Any]:
        history = state.score_history
        if not history:
            return {
                "average_score": None,
                "min_score": None,
                "max_score": None,
                "pass_rate": None,
                "total_attempts": 0,
                "total_retries": 0,
                "agents_scored": 0,
            }

        scores = [entry.score for entry in history]
        return {
            "average_score": sum(scores) / len(scores),
            "min_score": min(scores),
            "max_score": max(scores),
            "pass_rate": sum(1 for entry in history if entry.passed) / len(history),
            "total_attempts": len(history),
            "total_retries": sum(state.retry_count.values()),
            "agents_scored": len(self.latest_scores(state)),
        }

    def finalize(self, state: ScoringState) -> ScoringState:
        """Stamp ``final_score`` and ``quality_metrics`` onto the state."""
        state.final_score = self.aggregate(state)
        state.quality_metrics = self.calculate_quality_metrics(state)
        logger.debug("Final ensemble score: %s", state.final_score)
        return state

    def get_recommendations(self, state: ScoringState) -> list[str]:
        """Human-readable suggestions derived from the score history."""
        recommendations = []
        minimum = self.config.default_thresholds.minimum or 0.7

        for agent, score in self.latest_scores(state).items():
            if score < minimum:
                recommendations.append(
                    f"Agent '{agent}' finished below the minimum score "
                    f"({score:.2f} < {minimum:.2f}); review its configuration"
                )
        for agent, retries in state.retry_count.items():
            if retries >= max(self.config.max_retries, 1):
                recommendations.append(
                    f"Agent '{agent}' needed {retries} retries; "
                    "consider adjusting its prompt or thresholds"
                )
        if self.is_quality_degrading(state):
            recommendations.append("Scores are trending down across recent attempts")
        return recommendations

    def get_score_trend(self, state: ScoringState, agent: str | None = None) -> str:
        """Classify recent scores as improving, declining or stable."""
        entries = state.scores_for(agent) if agent else state.score_history
        if len(entries) < 2:
            return "insufficient_data"

        delta = entries[-1].score - entries[0].score
        if delta > 0.05:
            return "improving"
        if delta < -0.05:
            return "declining"
        return "stable"

    def is_quality_degrading(self, state: ScoringState, window: int = 3) -> bool:
        """True when each of the last ``window`` scores is lower than the one before."""
        recent = [entry.score for entry in state.score_history[-window:]]
        if len(recent) < window:
            return False
        return all(later < earlier for earlier, later in zip(recent, recent[1:]))
