"""Scoring value types and the per-run scoring state."""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar

T = TypeVar("T")

ScoringStatus = Literal[
    "passed", "max_retries_exceeded", "below_threshold", "no_improvement"
]


@dataclass(frozen=True)
class ScoringResult:
    """Outcome of evaluating one attempt."""

    score: float
    passed: bool
    feedback: str | None = None
    breakdown: dict[str, float] | None = None


@dataclass(frozen=True)
class ScoreHistoryEntry:
    agent: str
    score: float
    passed: bool
    attempt: int
    feedback: str | None = None
    breakdown: dict[str, float] | None = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent": self.agent,
            "score": self.score,
            "passed": self.passed,
            "attempt": self.attempt,
            "feedback": self.feedback,
            "breakdown": self.breakdown,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScoreHistoryEntry:
        return cls(
            agent=data["agent"],
            score=float(data["score"]),
            passed=bool(data["passed"]),
            attempt=int(data["attempt"]),
            feedback=data.get("feedback"),
            breakdown=data.get("breakdown"),
            timestamp=float(data.get("timestamp", time.time())),
        )


@dataclass
class ScoringState:
    """Scores accumulated over one ensemble run.

    Owned by a single execution and threaded through its step loop.
    """

    score_history: list[ScoreHistoryEntry] = field(default_factory=list)
    retry_count: dict[str, int] = field(default_factory=dict)
    final_score: float | None = None
    quality_metrics: dict[str, Any] | None = None

    def scores_for(self, agent: str) -> list[ScoreHistoryEntry]:
        return [entry for entry in self.score_history if entry.agent == agent]

    def to_dict(self) -> dict[str, Any]:
        return {
            "score_history": [entry.to_dict() for entry in self.score_history],
            "retry_count": dict(self.retry_count),
            "final_score": self.final_score,
            "quality_metrics": self.quality_metrics,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScoringState:
        return cls(
            score_history=[
                ScoreHistoryEntry.from_dict(e) for e in data.get("score_history", [])
            ],
            retry_count=dict(data.get("retry_count", {})),
            final_score=data.get("final_score"),
            quality_metrics=data.get("quality_metrics"),
        )


@dataclass(frozen=True)
class ScoredExecution(Generic[T]):
    """What the scoring gate hands back: the last attempt plus its score."""

    output: T
    score: ScoringResult
    attempts: int
    status: ScoringStatus
    history: list[ScoringResult]
