"""Retry-until-threshold quality gate around a step's execution."""

import asyncio
import inspect
import logging
import math
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from ensemble_conductor.core.config.ensemble_config import (
    EnsembleScoringConfig,
    ScoringThresholds,
    StepScoringConfig,
)
from ensemble_conductor.core.errors import AgentExecutionError
from ensemble_conductor.core.execution.scoring.types import (
    ScoredExecution,
    ScoreHistoryEntry,
    ScoringResult,
    ScoringState,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MINIMUM = 0.7
MAX_BACKOFF_SECONDS = 60.0

ExecuteFn = Callable[[int], Awaitable[T]]
EvaluateFn = Callable[[Any, int, ScoringResult | None], Any]


def parse_evaluation(raw: Any, threshold: float) -> ScoringResult:
    """Turn an evaluator's return value into a ``ScoringResult``.

    Accepts a bare number, or a mapping with ``score`` (or ``value``) and
    optional ``feedback`` (or ``message``) and ``breakdown``.
    """
    feedback = None
    breakdown = None
    if isinstance(raw, Mapping):
        value = raw.get("score", raw.get("value"))
        feedback = raw.get("feedback", raw.get("message"))
        breakdown = raw.get("breakdown")
    else:
        value = raw

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Evaluator returned a non-numeric score: {raw!r}")

    score = min(max(float(value), 0.0), 1.0)
    return ScoringResult(
        score=score,
        passed=score >= threshold,
        feedback=str(feedback) if feedback is not None else None,
        breakdown=dict(breakdown) if isinstance(breakdown, Mapping) else None,
    )


class ScoringExecutor:
    """Runs a step repeatedly until its score passes the minimum threshold.

    Missing the threshold after all retries is not a failure: the last
    attempt's output is returned with status ``max_retries_exceeded``.
    """

    def __init__(
        self,
        config: EnsembleScoringConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or EnsembleScoringConfig()
        self._sleep = sleep

    def resolve_threshold(self, step: StepScoringConfig) -> float:
        if step.thresholds and step.thresholds.minimum is not None:
            return step.thresholds.minimum
        if self.config.default_thresholds.minimum is not None:
            return self.config.default_thresholds.minimum
        return DEFAULT_MINIMUM

    def resolve_max_retries(self, step: StepScoringConfig) -> int:
        if step.max_retries is not None:
            return step.max_retries
        return self.config.max_retries

    def calculate_backoff(self, attempt: int) -> float:
        """Delay in seconds after the given failed attempt (1-based)."""
        base = self.config.initial_backoff / 1000
        strategy = self.config.backoff_strategy
        if strategy == "fixed":
            delay = base
        elif strategy == "linear":
            delay = base * attempt
        else:
            delay = base * 2 ** (attempt - 1)
        return min(delay, MAX_BACKOFF_SECONDS)

    async def execute_with_scoring(
        self,
        agent_name: str,
        execute_fn: ExecuteFn[T],
        evaluate_fn: EvaluateFn,
        step_config: StepScoringConfig,
        scoring_state: ScoringState,
    ) -> ScoredExecution[T]:
        """Execute, evaluate and retry per the step's scoring policy.

        Every attempt is appended to ``scoring_state.score_history``.

        Raises:
            AgentExecutionError: When ``on_failure`` is ``abort`` and an
                attempt scores below the threshold
        """
        threshold = self.resolve_threshold(step_config)
        max_retries = self.resolve_max_retries(step_config)
        history: list[ScoringResult] = []
        previous: ScoringResult | None = None

        for attempt in range(1, max_retries + 2):
            output = await execute_fn(attempt)
            raw = evaluate_fn(output, attempt, previous)
            if inspect.isawaitable(raw):
                raw = await raw
            result = parse_evaluation(raw, threshold)
            history.append(result)

            scoring_state.score_history.append(
                ScoreHistoryEntry(
                    agent=agent_name,
                    score=result.score,
                    passed=result.passed,
                    attempt=attempt,
                    feedback=result.feedback,
                    breakdown=result.breakdown,
                )
            )
            scoring_state.retry_count[agent_name] = attempt - 1
            logger.debug(
                "Agent %s attempt %d scored %.3f (minimum %.3f)",
                agent_name,
                attempt,
                result.score,
                threshold,
            )

            if result.passed:
                return ScoredExecution(output, result, attempt, "passed", history)

            if step_config.on_failure == "continue":
                logger.warning(
                    "Agent %s scored %.3f below minimum %.3f; continuing",
                    agent_name,
                    result.score,
                    threshold,
                )
                return ScoredExecution(
                    output, result, attempt, "below_threshold", history
                )

            if step_config.on_failure == "abort":
                raise AgentExecutionError(
                    agent_name,
                    f"score {result.score:.3f} below minimum {threshold:.3f}",
                )

            if (
                step_config.require_improvement
                and previous is not None
                and result.score - previous.score < step_config.min_improvement
            ):
                logger.warning(
                    "Agent %s did not improve by %.3f on attempt %d; stopping",
                    agent_name,
                    step_config.min_improvement,
                    attempt,
                )
                return ScoredExecution(
                    output, result, attempt, "no_improvement", history
                )

            previous = result
            if attempt <= max_retries:
                await self._sleep(self.calculate_backoff(attempt))

        logger.warning(
            "Agent %s exceeded max retries (%d) with score %.3f; "
            "using last attempt",
            agent_name,
            max_retries,
            history[-1].score,
        )
        return ScoredExecution(
            output, history[-1], len(history), "max_retries_exceeded", history
        )

    @staticmethod
    def calculate_composite_score(
        breakdown: Mapping[str, float], weights: Mapping[str, float] | None = None
    ) -> float:
        """Weighted average of criterion scores (equal weights by default)."""
        if not breakdown:
            return 0.0
        weights = weights or {}
        total_weight = sum(weights.get(name, 1.0) for name in breakdown)
        if total_weight <= 0:
            return 0.0
        weighted = sum(
            score * weights.get(name, 1.0) for name, score in breakdown.items()
        )
        return weighted / total_weight

    @staticmethod
    def get_score_range(score: float, thresholds: ScoringThresholds) -> str:
        """Name the highest threshold band the score reaches."""
        if thresholds.excellent is not None and score >= thresholds.excellent:
            return "excellent"
        if thresholds.target is not None and score >= thresholds.target:
            return "target"
        minimum = DEFAULT_MINIMUM if thresholds.minimum is None else thresholds.minimum
        if score >= minimum:
            return "acceptable"
        return "below_minimum"

    @staticmethod
    def get_failed_criteria(
        breakdown: Mapping[str, float] | None, threshold: float
    ) -> list[str]:
        if not breakdown:
            return []
        return [
            name
            for name, score in breakdown.items()
            if not math.isnan(score) and score < threshold
        ]
