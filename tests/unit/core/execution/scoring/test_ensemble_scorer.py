"""Tests for ensemble-level score aggregation."""

import pytest

from ensemble_conductor.core.config.ensemble_config import EnsembleScoringConfig
from ensemble_conductor.core.execution.scoring import (
    EnsembleScorer,
    ScoreHistoryEntry,
    ScoringState,
)


def make_state(*entries: tuple[str, float, bool]) -> ScoringState:
    state = ScoringState()
    for agent, score, passed in entries:
        attempt = len(state.scores_for(agent)) + 1
        state.score_history.append(
            ScoreHistoryEntry(agent=agent, score=score, passed=passed, attempt=attempt)
        )
        state.retry_count[agent] = attempt - 1
    return state


class TestAggregate:
    def test_uses_latest_score_per_agent(self) -> None:
        """Test that retried agents count once, with their last score."""
        state = make_state(("a", 0.2, False), ("a", 0.8, True), ("b", 0.6, False))

        assert EnsembleScorer().aggregate(state) == pytest.approx(0.7)

    def test_weighted_average(self) -> None:
        scorer = EnsembleScorer(EnsembleScoringConfig(weights={"a": 3.0}))
        state = make_state(("a", 1.0, True), ("b", 0.0, False))

        assert scorer.aggregate(state) == pytest.approx(0.75)

    def test_minimum(self) -> None:
        scorer = EnsembleScorer(EnsembleScoringConfig(aggregation="minimum"))
        state = make_state(("a", 0.9, True), ("b", 0.4, False))

        assert scorer.aggregate(state) == 0.4

    def test_geometric_mean(self) -> None:
        scorer = EnsembleScorer(EnsembleScoringConfig(aggregation="geometric_mean"))

        assert scorer.aggregate(
            make_state(("a", 0.25, False), ("b", 1.0, True))
        ) == pytest.approx(0.5)
        assert scorer.aggregate(make_state(("a", 0.0, False), ("b", 1.0, True))) == 0

    def test_nothing_scored(self) -> None:
        assert EnsembleScorer().aggregate(ScoringState()) is None


class TestQualityAnalysis:
    def test_quality_metrics(self) -> None:
        state = make_state(("a", 0.5, False), ("a", 0.9, True), ("b", 0.7, True))

        metrics = EnsembleScorer().calculate_quality_metrics(state)

        assert metrics["average_score"] == pytest.approx(0.7)
        assert metrics["min_score"] == 0.5
        assert metrics["max_score"] == 0.9
        assert metrics["pass_rate"] == pytest.approx(2 / 3)
        assert metrics["total_attempts"] == 3
        assert metrics["total_retries"] == 1
        assert metrics["agents_scored"] == 2

    def test_empty_metrics(self) -> None:
        metrics = EnsembleScorer().calculate_quality_metrics(ScoringState())

        assert metrics["total_attempts"] == 0
        assert metrics["average_score"] is None

    def test_finalize_stamps_state(self) -> None:
        state = make_state(("a", 0.8, True))

        finalized = EnsembleScorer().finalize(state)

        assert finalized is state
        assert state.final_score == 0.8
        assert state.quality_metrics is not None

    def test_trend(self) -> None:
        scorer = EnsembleScorer()
        state = make_state(("a", 0.3, False), ("a", 0.6, False), ("b", 0.6, False))

        assert scorer.get_score_trend(state, "a") == "improving"
        assert scorer.get_score_trend(state, "b") == "insufficient_data"
        assert scorer.get_score_trend(
            make_state(("c", 0.9, True), ("c", 0.5, False))
        ) == "declining"

    def test_degrading(self) -> None:
        scorer = EnsembleScorer()

        assert scorer.is_quality_degrading(
            make_state(("a", 0.9, True), ("a", 0.7, True), ("a", 0.5, False))
        )
        assert not scorer.is_quality_degrading(
            make_state(("a", 0.5, False), ("a", 0.7, True), ("a", 0.6, False))
        )
        assert not scorer.is_quality_degrading(make_state(("a", 0.5, False)))

    def test_recommendations(self) -> None:
        scorer = EnsembleScorer(EnsembleScoringConfig(max_retries=2))
        state = make_state(
            ("a", 0.9, True), ("a", 0.6, False), ("a", 0.4, False)
        )

        recommendations = scorer.get_recommendations(state)

        assert any("below the minimum" in r for r in recommendations)
        assert any("needed 2 retries" in r for r in recommendations)
        assert any("trending down" in r for r in recommendations)
