"""Typed result models for ensemble execution.

These are what ``Executor`` returns inside ``Ok``. Each serializes to a
JSON-safe dict for the CLI, the HTTP layer and the resumption store.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from ensemble_conductor.core.config.ensemble_config import (
    EnsembleConfig,
    parse_ensemble_data,
)
from ensemble_conductor.core.execution.scoring.types import ScoringState

ExecutionStatus = Literal["completed", "suspended"]


def to_plain(value: Any) -> Any:
    """Recursively convert mappings and tuples into JSON-friendly dicts/lists."""
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


@dataclass(frozen=True)
class AgentMetric:
    """Per-step record."""

    name: str
    duration: float
    cached: bool
    success: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "duration": self.duration,
            "cached": self.cached,
            "success": self.success,
        }


@dataclass
class ExecutionMetrics:
    """Timing and cache statistics for one run."""

    ensemble: str
    total_duration: float = 0.0
    agents: list[AgentMetric] = field(default_factory=list)
    cache_hits: int = 0

    def record(self, metric: AgentMetric) -> None:
        self.agents.append(metric)
        if metric.cached:
            self.cache_hits += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "ensemble": self.ensemble,
            "total_duration": self.total_duration,
            "agents": [metric.to_dict() for metric in self.agents],
            "cache_hits": self.cache_hits,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExecutionMetrics:
        return cls(
            ensemble=data["ensemble"],
            total_duration=float(data.get("total_duration", 0.0)),
            agents=[AgentMetric(**metric) for metric in data.get("agents", [])],
            cache_hits=int(data.get("cache_hits", 0)),
        )


@dataclass(frozen=True)
class SuspendedExecutionState:
    """Everything needed to continue a suspended run at ``resume_from_step``.

    ``metadata`` carries ``suspended_at``, ``suspended_by``, ``reason`` and,
    once persisted, ``expires_at``.
    """

    ensemble: EnsembleConfig
    execution_context: dict[str, Any]
    state_snapshot: dict[str, Any] | None
    scoring_snapshot: dict[str, Any] | None
    metrics: ExecutionMetrics
    execution_id: str
    resume_from_step: int
    metadata: dict[str, Any] = field(default_factory=dict)

    def with_metadata(self, **updates: Any) -> SuspendedExecutionState:
        return replace(self, metadata={**self.metadata, **updates})

    def to_dict(self) -> dict[str, Any]:
        return {
            "ensemble": self.ensemble.to_dict(),
            "execution_context": to_plain(self.execution_context),
            "state_snapshot": to_plain(self.state_snapshot),
            "scoring_snapshot": to_plain(self.scoring_snapshot),
            "metrics": self.metrics.to_dict(),
            "execution_id": self.execution_id,
            "resume_from_step": self.resume_from_step,
            "metadata": to_plain(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SuspendedExecutionState:
        return cls(
            ensemble=parse_ensemble_data(data["ensemble"]),
            execution_context=dict(data.get("execution_context", {})),
            state_snapshot=data.get("state_snapshot"),
            scoring_snapshot=data.get("scoring_snapshot"),
            metrics=ExecutionMetrics.from_dict(data["metrics"]),
            execution_id=data["execution_id"],
            resume_from_step=int(data["resume_from_step"]),
            metadata=dict(data.get("metadata", {})),
        )


@dataclass(frozen=True)
class ExecutionOutput:
    """Successful (or suspended) outcome of an ensemble run."""

    output: Any
    metrics: ExecutionMetrics
    execution_id: str
    status: ExecutionStatus = "completed"
    state_report: dict[str, Any] | None = None
    scoring: ScoringState | None = None
    suspended: SuspendedExecutionState | None = None
    resume_token: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "execution_id": self.execution_id,
            "status": self.status,
            "output": to_plain(self.output),
            "metrics": self.metrics.to_dict(),
        }
        if self.state_report is not None:
            result["state_report"] = self.state_report
        if self.scoring is not None:
            result["scoring"] = self.scoring.to_dict()
        if self.resume_token is not None:
            result["resume_token"] = self.resume_token
        if self.suspended is not None:
            result["resume_from_step"] = self.suspended.resume_from_step
            result["suspension"] = to_plain(self.suspended.metadata)
        return result
