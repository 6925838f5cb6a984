"""Quality-gated execution and score aggregation."""

from ensemble_conductor.core.execution.scoring.ensemble_scorer import EnsembleScorer
from ensemble_conductor.core.execution.scoring.scoring_executor import (
    ScoringExecutor,
    parse_evaluation,
)
from ensemble_conductor.core.execution.scoring.types import (
    ScoredExecution,
    ScoreHistoryEntry,
    ScoringResult,
    ScoringState,
)

__all__ = [
    "EnsembleScorer",
    "ScoredExecution",
    "ScoreHistoryEntry",
    "ScoringExecutor",
    "ScoringResult",
    "ScoringState",
    "parse_evaluation",
]
