"""Sequential ensemble executor.

Runs an ensemble's flow one step at a time: resolve the step's input, resolve
its agent, run it (through the scoring gate when configured) under a timeout,
merge its state writes and record metrics. The first failing step aborts the
run. A step that returns a suspension signal ends the run early with a
snapshot that ``resume_execution`` can continue from.
"""

import asyncio
import copy
import inspect
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from ensemble_conductor.agents.base_agent import (
    AgentExecutionContext,
    AgentResponse,
    BaseAgent,
)
from ensemble_conductor.agents.registry import (
    BuiltInAgentRegistry,
    create_default_registry,
)
from ensemble_conductor.core.config.engine_config import EngineConfig
from ensemble_conductor.core.config.ensemble_config import EnsembleConfig, FlowStep
from ensemble_conductor.core.errors import (
    AgentExecutionError,
    AgentNotFoundError,
    ConductorError,
    EnsembleExecutionError,
    EnsembleParseError,
)
from ensemble_conductor.core.execution.notifications import NotificationManager
from ensemble_conductor.core.execution.parser import Parser, parse_agent_reference
from ensemble_conductor.core.execution.result_types import (
    AgentMetric,
    ExecutionMetrics,
    ExecutionOutput,
    SuspendedExecutionState,
    to_plain,
)
from ensemble_conductor.core.execution.resumption_manager import ResumptionManager
from ensemble_conductor.core.execution.scoring import (
    EnsembleScorer,
    ScoringExecutor,
    ScoringResult,
    ScoringState,
)
from ensemble_conductor.core.execution.state_manager import (
    PendingUpdates,
    StateManager,
)
from ensemble_conductor.core.result import Err, Ok

logger = logging.getLogger(__name__)

ExecutionResult = Ok[ExecutionOutput] | Err[ConductorError]
ProgressHook = Callable[[str, dict[str, Any]], None]
Evaluator = Callable[[Any, int, ScoringResult | None], Any]


@dataclass
class _Run:
    """Mutable bookkeeping for one pass through the step loop."""

    ensemble: EnsembleConfig
    execution_id: str
    context: dict[str, Any]
    state_manager: StateManager | None
    scoring_state: ScoringState | None
    metrics: ExecutionMetrics
    started_at: float
    prior_duration: float = 0.0

    def elapsed(self) -> float:
        return self.prior_duration + (time.perf_counter() - self.started_at)

    def refresh_views(self) -> None:
        if self.state_manager is not None:
            self.context["state"] = self.state_manager.get_state()
        if self.scoring_state is not None:
            self.context["scoring"] = self.scoring_state.to_dict()


class Executor:
    """Runs ensembles against built-in and user-registered agents."""

    def __init__(
        self,
        builtin_registry: BuiltInAgentRegistry | None = None,
        config: EngineConfig | None = None,
        parser: Parser | None = None,
        resumption_manager: ResumptionManager | None = None,
        notification_manager: NotificationManager | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.builtin_registry = builtin_registry or create_default_registry()
        self.config = config or EngineConfig()
        self.parser = parser or Parser()
        self.resumption_manager = resumption_manager
        self.notification_manager = notification_manager
        self._sleep = sleep
        self._agents: dict[str, BaseAgent] = {}
        self._resolved: dict[str, BaseAgent] = {}
        self._evaluators: dict[str, Evaluator] = {}
        self._progress_hooks: list[ProgressHook] = []

    # Registration

    def register_agent(self, agent: BaseAgent) -> None:
        """Add a user-defined agent, addressable by name and by ``name@version``."""
        self._agents[agent.reference] = agent
        if agent.version:
            self._agents.setdefault(agent.name, agent)
        for key in [k for k in self._resolved if k.split("@", 1)[0] == agent.name]:
            del self._resolved[key]

    def register_evaluator(self, name: str, evaluator: Evaluator) -> None:
        """Register ``evaluator(output, attempt, previous_score)`` for scoring."""
        self._evaluators[name] = evaluator

    def get_registered_agents(self) -> list[str]:
        names = {info.name for info in self.builtin_registry.list_agents()}
        return sorted(names | set(self._agents))

    def has_agent(self, reference: str) -> bool:
        try:
            self._resolve_agent(reference)
        except AgentNotFoundError:
            return False
        return True

    def register_progress_hook(self, hook: ProgressHook) -> None:
        self._progress_hooks.append(hook)

    def unregister_progress_hook(self, hook: ProgressHook) -> None:
        if hook in self._progress_hooks:
            self._progress_hooks.remove(hook)

    def _emit(self, event_type: str, data: dict[str, Any]) -> None:
        for hook in list(self._progress_hooks):
            try:
                hook(event_type, data)
            except Exception:
                logger.debug("Progress hook failed for %s", event_type, exc_info=True)

    def _notify(self, run: _Run, event: str, payload: dict[str, Any]) -> None:
        if self.notification_manager is not None and run.ensemble.notifications:
            self.notification_manager.notify(
                run.ensemble, event, {"execution_id": run.execution_id, **payload}
            )

    # Resolution

    def _resolve_agent(self, reference: str) -> BaseAgent:
        """Built-ins first, then user agents; results cached by reference.

        Raises:
            AgentNotFoundError: If nothing matches
        """
        if reference in self._resolved:
            return self._resolved[reference]

        name, version = parse_agent_reference(reference)
        agent = self.builtin_registry.create(name, version)
        if agent is None:
            agent = self._agents.get(reference)
        if agent is None and version is not None:
            candidate = self._agents.get(name)
            if candidate is not None and candidate.version in (None, version):
                agent = candidate
        if agent is None:
            raise AgentNotFoundError(reference)

        self._resolved[reference] = agent
        return agent

    def _resolve_evaluator(self, step: FlowStep, reference: str) -> Evaluator:
        if reference in self._evaluators:
            return self._evaluators[reference]

        evaluator_agent = self._resolve_agent(reference)
        criteria = step.scoring.criteria if step.scoring else None

        async def evaluate(
            output: Any, attempt: int, previous: ScoringResult | None
        ) -> Any:
            context = AgentExecutionContext(
                input={
                    "output": output,
                    "attempt": attempt,
                    "previous_score": previous.score if previous else None,
                    "criteria": criteria,
                },
                ensemble_name="",
                step_index=-1,
                step_id=f"{step.context_key}:evaluator",
                execution_id="",
            )
            response = await evaluator_agent.execute(context)
            if not response.success:
                raise AgentExecutionError(
                    reference, response.error or "evaluation failed"
                )
            return response.data

        return evaluate

    # Entry points

    async def execute_ensemble(
        self,
        ensemble: EnsembleConfig,
        input_data: Any = None,
        execution_id: str | None = None,
    ) -> ExecutionResult:
        """Run ``ensemble`` from its first step."""
        scoring_enabled = ensemble.scoring is not None and ensemble.scoring.enabled
        run = _Run(
            ensemble=ensemble,
            execution_id=execution_id or uuid.uuid4().hex,
            context={"input": input_data},
            state_manager=StateManager(ensemble.state) if ensemble.state else None,
            scoring_state=ScoringState() if scoring_enabled else None,
            metrics=ExecutionMetrics(ensemble.name),
            started_at=time.perf_counter(),
        )
        run.refresh_views()

        logger.info("Executing ensemble %s (%s)", ensemble.name, run.execution_id)
        self._emit(
            "execution_started",
            {
                "execution_id": run.execution_id,
                "ensemble": ensemble.name,
                "total_steps": len(ensemble.flow),
            },
        )
        self._notify(run, "execution.started", {"input": to_plain(input_data)})
        return await self._run_flow(run, 0)

    async def resume_execution(
        self, suspended: SuspendedExecutionState, resume_input: Any = None
    ) -> ExecutionResult:
        """Continue a suspended run at ``suspended.resume_from_step``."""
        ensemble = suspended.ensemble
        context = copy.deepcopy(suspended.execution_context)
        if resume_input is not None:
            context["resume_input"] = resume_input

        if suspended.state_snapshot is not None:
            state_manager = StateManager.from_snapshot(
                ensemble.state, suspended.state_snapshot
            )
        else:
            state_manager = StateManager(ensemble.state) if ensemble.state else None

        scoring_state = None
        if suspended.scoring_snapshot is not None:
            scoring_state = ScoringState.from_dict(suspended.scoring_snapshot)
        elif ensemble.scoring is not None and ensemble.scoring.enabled:
            scoring_state = ScoringState()

        metrics = ExecutionMetrics.from_dict(suspended.metrics.to_dict())
        run = _Run(
            ensemble=ensemble,
            execution_id=suspended.execution_id,
            context=context,
            state_manager=state_manager,
            scoring_state=scoring_state,
            metrics=metrics,
            started_at=time.perf_counter(),
            prior_duration=metrics.total_duration,
        )
        run.refresh_views()

        logger.info(
            "Resuming ensemble %s (%s) at step %d",
            ensemble.name,
            run.execution_id,
            suspended.resume_from_step,
        )
        self._emit(
            "execution_resumed",
            {
                "execution_id": run.execution_id,
                "ensemble": ensemble.name,
                "resume_from_step": suspended.resume_from_step,
                "total_steps": len(ensemble.flow),
            },
        )
        return await self._run_flow(run, suspended.resume_from_step)

    async def execute_from_yaml(
        self, text: str, input_data: Any = None
    ) -> ExecutionResult:
        """Parse, check agent references, then execute."""
        try:
            ensemble = self.parser.parse_ensemble(text)
        except EnsembleParseError as e:
            return Err(e)

        missing = self.parser.validate_agent_references(ensemble, self.has_agent)
        if missing:
            return Err(
                EnsembleParseError(
                    ensemble.name, [f"flow: unknown agent '{ref}'" for ref in missing]
                )
            )
        return await self.execute_ensemble(ensemble, input_data)

    # Step loop

    def _default_input(self, run: _Run, index: int) -> Any:
        if index == 0:
            return run.context.get("input")
        previous = run.context.get(run.ensemble.flow[index - 1].context_key, {})
        output = previous.get("output") if isinstance(previous, Mapping) else None
        return {} if output is None else output

    async def _run_flow(self, run: _Run, start_index: int) -> ExecutionResult:
        flow = run.ensemble.flow
        for index in range(start_index, len(flow)):
            step = flow[index]
            outcome = await self._run_step(run, index, step)
            if isinstance(outcome, Err):
                return outcome
            if outcome.suspend is not None:
                return await self._suspend(run, index, step, outcome)
        return self._complete(run)

    async def _run_step(
        self, run: _Run, index: int, step: FlowStep
    ) -> AgentResponse | Err[ConductorError]:
        step_name = step.context_key
        logger.debug("Step %d/%d: %s", index + 1, len(run.ensemble.flow), step.agent)
        self._emit(
            "agent_started",
            {"execution_id": run.execution_id, "agent": step_name, "index": index},
        )
        started = time.perf_counter()

        try:
            agent = self._resolve_agent(step.agent)
            response, pending = await self._execute_step(run, index, step, agent)
        except ConductorError as e:
            return self._fail(run, index, step, e, time.perf_counter() - started)
        except Exception as e:
            cause = AgentExecutionError(step.agent, str(e) or type(e).__name__, e)
            return self._fail(run, index, step, cause, time.perf_counter() - started)

        if run.state_manager is not None and pending is not None:
            run.state_manager = run.state_manager.apply_pending_updates(
                pending.updates, pending.access_log
            )

        if step.scoring is not None and run.scoring_state is not None:
            duration = time.perf_counter() - started
        else:
            duration = response.execution_time or (time.perf_counter() - started)
        run.metrics.record(AgentMetric(step_name, duration, response.cached, True))
        if response.cached:
            logger.debug("Cache hit for %s", step_name)

        run.context[step_name] = {"output": response.data, "success": True}
        run.refresh_views()
        self._emit(
            "agent_completed",
            {
                "execution_id": run.execution_id,
                "agent": step_name,
                "index": index,
                "duration": duration,
                "output": response.data,
            },
        )
        return response

    async def _execute_step(
        self, run: _Run, index: int, step: FlowStep, agent: BaseAgent
    ) -> tuple[AgentResponse, PendingUpdates | None]:
        """Run the step's agent, through the scoring gate when configured.

        Raises:
            ConductorError: On agent failure, timeout or an aborting score
        """
        step_name = step.context_key
        if step.input is not None:
            step_input = self.parser.resolve_interpolation(step.input, run.context)
        else:
            step_input = self._default_input(run, index)
        timeout = step.timeout or self.config.default_timeout
        scoring_state = run.scoring_state
        latest_pending: list[PendingUpdates | None] = [None]

        async def attempt(number: int) -> AgentResponse:
            state_context = None
            drain = None
            if run.state_manager is not None:
                state_context, drain = run.state_manager.get_state_for_agent(
                    step_name, step.state
                )

            previous = None
            if scoring_state is not None and number > 1:
                history = scoring_state.scores_for(step_name)
                previous = history[-1].score if history else None

            context = AgentExecutionContext(
                input=copy.deepcopy(to_plain(step_input)),
                ensemble_name=run.ensemble.name,
                step_index=index,
                step_id=step_name,
                execution_id=run.execution_id,
                previous_outputs={
                    s.context_key: run.context[s.context_key]["output"]
                    for s in run.ensemble.flow[:index]
                    if s.context_key in run.context
                },
                state=state_context,
                scoring={
                    "enabled": scoring_state is not None,
                    "attempt": number,
                    "previous_score": previous,
                },
                config=step.config,
                resume_input=run.context.get("resume_input"),
            )
            response = await self._execute_with_timeout(agent, context, timeout)
            if not response.success:
                raise AgentExecutionError(step.agent, response.error or "unknown error")
            latest_pending[0] = drain() if drain is not None else None
            return response

        if step.scoring is None:
            return await attempt(1), latest_pending[0]

        if scoring_state is None:
            logger.debug(
                "Scoring disabled for %s; running %s once",
                run.ensemble.name,
                step_name,
            )
            return await attempt(1), latest_pending[0]

        evaluator = self._resolve_evaluator(step, step.scoring.evaluator)

        async def evaluate(
            response: AgentResponse, number: int, previous: ScoringResult | None
        ) -> Any:
            raw = evaluator(response.data, number, previous)
            if inspect.isawaitable(raw):
                raw = await raw
            return raw

        scorer = ScoringExecutor(run.ensemble.scoring, sleep=self._sleep)
        scored = await scorer.execute_with_scoring(
            step_name, attempt, evaluate, step.scoring, scoring_state
        )
        logger.debug(
            "Step %s scoring finished: %s after %d attempt(s)",
            step_name,
            scored.status,
            scored.attempts,
        )
        return scored.output, latest_pending[0]

    async def _execute_with_timeout(
        self, agent: BaseAgent, context: AgentExecutionContext, timeout: float
    ) -> AgentResponse:
        try:
            return await asyncio.wait_for(agent.execute(context), timeout=timeout)
        except TimeoutError as e:
            raise AgentExecutionError(
                agent.name, f"timed out after {timeout} seconds", e
            ) from e

    # Outcomes

    def _fail(
        self,
        run: _Run,
        index: int,
        step: FlowStep,
        cause: ConductorError,
        duration: float | None,
    ) -> Err[ConductorError]:
        step_name = step.context_key
        if duration is not None:
            run.metrics.record(AgentMetric(step_name, duration, False, False))
        run.metrics.total_duration = run.elapsed()
        error = EnsembleExecutionError(run.ensemble.name, step_name, cause)

        logger.error(
            "Ensemble %s failed at step %d (%s): %s",
            run.ensemble.name,
            index,
            step_name,
            cause,
        )
        self._emit(
            "agent_failed",
            {
                "execution_id": run.execution_id,
                "agent": step_name,
                "index": index,
                "error": str(cause),
            },
        )
        self._emit(
            "execution_failed",
            {"execution_id": run.execution_id, "error": error.to_dict()},
        )
        self._notify(run, "execution.failed", {"error": error.to_dict()})
        return Err(error)

    def _final_output(self, run: _Run) -> Any:
        if run.ensemble.output is not None:
            return self.parser.resolve_interpolation(run.ensemble.output, run.context)
        if not run.ensemble.flow:
            return {}
        last = run.context.get(run.ensemble.flow[-1].context_key, {})
        return last.get("output")

    def _state_report(self, run: _Run) -> dict[str, Any] | None:
        if run.state_manager is None:
            return None
        return {
            **run.state_manager.get_access_report(),
            "state": to_plain(run.state_manager.get_state()),
        }

    def _complete(self, run: _Run) -> Ok[ExecutionOutput]:
        if run.scoring_state is not None:
            EnsembleScorer(run.ensemble.scoring).finalize(run.scoring_state)
            run.refresh_views()

        output = self._final_output(run)
        run.metrics.total_duration = run.elapsed()
        result = ExecutionOutput(
            output=output,
            metrics=run.metrics,
            execution_id=run.execution_id,
            state_report=self._state_report(run),
            scoring=run.scoring_state,
        )

        logger.info(
            "Ensemble %s completed in %.3fs",
            run.ensemble.name,
            run.metrics.total_duration,
        )
        self._emit(
            "execution_completed",
            {"execution_id": run.execution_id, "result": result.to_dict()},
        )
        self._notify(run, "execution.completed", {"output": to_plain(output)})
        return Ok(result)

    async def _suspend(
        self, run: _Run, index: int, step: FlowStep, response: AgentResponse
    ) -> ExecutionResult:
        signal = response.suspend
        assert signal is not None
        run.metrics.total_duration = run.elapsed()

        suspended = SuspendedExecutionState(
            ensemble=run.ensemble,
            execution_context=copy.deepcopy(to_plain(run.context)),
            state_snapshot=run.state_manager.snapshot() if run.state_manager else None,
            scoring_snapshot=run.scoring_state.to_dict() if run.scoring_state else None,
            metrics=ExecutionMetrics.from_dict(run.metrics.to_dict()),
            execution_id=run.execution_id,
            resume_from_step=index + 1,
            metadata={
                "suspended_at": time.time(),
                "suspended_by": step.context_key,
                "reason": signal.reason,
                "request": to_plain(signal.data),
            },
        )

        token = None
        if self.resumption_manager is not None:
            stored = await self.resumption_manager.suspend(suspended)
            if stored.is_err():
                return self._fail(run, index, step, stored.error, None)
            token = stored.value

        logger.info(
            "Ensemble %s suspended at step %d (%s)",
            run.ensemble.name,
            index,
            signal.reason,
        )
        self._emit(
            "execution_suspended",
            {
                "execution_id": run.execution_id,
                "agent": step.context_key,
                "index": index,
                "resume_token": token,
            },
        )
        self._notify(
            run,
            "execution.suspended",
            {"resume_token": token, "reason": signal.reason},
        )
        return Ok(
            ExecutionOutput(
                output=response.data,
                metrics=run.metrics,
                execution_id=run.execution_id,
                status="suspended",
                state_report=self._state_report(run),
                scoring=run.scoring_state,
                suspended=suspended,
                resume_token=token,
            )
        )
