"""Tests for execution result models."""

from types import MappingProxyType

from ensemble_conductor.core.config.ensemble_config import parse_ensemble_data
from ensemble_conductor.core.execution.result_types import (
    AgentMetric,
    ExecutionMetrics,
    ExecutionOutput,
    SuspendedExecutionState,
    to_plain,
)
from ensemble_conductor.core.execution.scoring import ScoringState


def make_metrics() -> ExecutionMetrics:
    metrics = ExecutionMetrics(ensemble="demo", total_duration=1.5)
    metrics.record(AgentMetric("a", 0.5, cached=False, success=True))
    metrics.record(AgentMetric("b", 0.0, cached=True, success=True))
    return metrics


class TestToPlain:
    def test_converts_proxies_and_tuples(self) -> None:
        value = MappingProxyType({"a": (1, 2), "b": {"c": MappingProxyType({})}})

        assert to_plain(value) == {"a": [1, 2], "b": {"c": {}}}


class TestExecutionMetrics:
    def test_record_counts_cache_hits(self) -> None:
        metrics = make_metrics()

        assert metrics.cache_hits == 1
        assert len(metrics.agents) == 2

    def test_round_trip(self) -> None:
        metrics = make_metrics()

        assert ExecutionMetrics.from_dict(metrics.to_dict()) == metrics


class TestSuspendedExecutionState:
    def test_round_trip(self) -> None:
        suspended = SuspendedExecutionState(
            ensemble=parse_ensemble_data({"name": "demo", "flow": [{"agent": "a"}]}),
            execution_context={"input": {"x": 1}, "a": {"output": 2, "success": True}},
            state_snapshot={"state": {"k": "v"}, "access_log": []},
            scoring_snapshot=ScoringState().to_dict(),
            metrics=make_metrics(),
            execution_id="exec-1",
            resume_from_step=1,
            metadata={"reason": "approval_required"},
        )

        restored = SuspendedExecutionState.from_dict(suspended.to_dict())

        assert restored == suspended

    def test_with_metadata_returns_copy(self) -> None:
        suspended = SuspendedExecutionState(
            ensemble=parse_ensemble_data({"name": "demo", "flow": []}),
            execution_context={},
            state_snapshot=None,
            scoring_snapshot=None,
            metrics=ExecutionMetrics("demo"),
            execution_id="exec-1",
            resume_from_step=0,
            metadata={"reason": "r"},
        )

        updated = suspended.with_metadata(token="resume_abc")

        assert updated.metadata == {"reason": "r", "token": "resume_abc"}
        assert suspended.metadata == {"reason": "r"}


class TestExecutionOutput:
    def test_completed_to_dict(self) -> None:
        output = ExecutionOutput(
            output=MappingProxyType({"answer": 42}),
            metrics=make_metrics(),
            execution_id="exec-1",
        )

        data = output.to_dict()

        assert data["status"] == "completed"
        assert data["output"] == {"answer": 42}
        assert "resume_token" not in data
        assert "scoring" not in data

    def test_optional_sections_included(self) -> None:
        output = ExecutionOutput(
            output=None,
            metrics=ExecutionMetrics("demo"),
            execution_id="exec-1",
            state_report={"unused_keys": []},
            scoring=ScoringState(final_score=0.9),
        )

        data = output.to_dict()

        assert data["state_report"] == {"unused_keys": []}
        assert data["scoring"]["final_score"] == 0.9
