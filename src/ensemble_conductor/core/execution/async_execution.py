"""Background ensemble execution with live status tracking."""

import asyncio
import logging
import uuid
from typing import Any

from ensemble_conductor.core.config.ensemble_config import EnsembleConfig
from ensemble_conductor.core.errors import StateTransitionError, StorageNotFoundError
from ensemble_conductor.core.execution.execution_state import (
    ExecutionState,
    ExecutionStateRegistry,
    StatusResult,
)
from ensemble_conductor.core.execution.executor import ExecutionResult, Executor
from ensemble_conductor.core.execution.result_types import to_plain
from ensemble_conductor.core.result import Err

logger = logging.getLogger(__name__)


class AsyncExecutionService:
    """Runs ensembles as background tasks and mirrors progress into status actors.

    Cancellation only marks the status as cancelled; a step already in flight
    runs to completion and its late result is discarded by the actor.
    """

    def __init__(self, executor: Executor, registry: ExecutionStateRegistry) -> None:
        self.executor = executor
        self.registry = registry
        self._tasks: dict[str, asyncio.Task[ExecutionResult]] = {}

    async def start(self, ensemble: EnsembleConfig, input_data: Any = None) -> str:
        """Start ``ensemble`` in the background and return its execution id."""
        execution_id = uuid.uuid4().hex
        actor = self.registry.get_or_create(execution_id)
        await actor.start(total_steps=len(ensemble.flow), ensemble=ensemble.name)

        task = asyncio.get_running_loop().create_task(
            self._run(ensemble, input_data, execution_id, actor)
        )
        self._tasks[execution_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(execution_id, None))
        logger.info("Started async execution %s of %s", execution_id, ensemble.name)
        return execution_id

    async def _run(
        self,
        ensemble: EnsembleConfig,
        input_data: Any,
        execution_id: str,
        actor: ExecutionState,
    ) -> ExecutionResult:
        def track_progress(event_type: str, data: dict[str, Any]) -> None:
            if data.get("execution_id") != execution_id:
                return
            if event_type == "agent_completed":
                actor.submit(
                    "progress",
                    step=data["agent"],
                    index=data["index"],
                    output=to_plain(data.get("output")),
                )

        self.executor.register_progress_hook(track_progress)
        try:
            result = await self.executor.execute_ensemble(
                ensemble, input_data, execution_id=execution_id
            )
        except Exception as e:
            logger.error("Async execution %s crashed: %s", execution_id, e)
            await actor.fail({"name": type(e).__name__, "message": str(e)})
            raise
        finally:
            self.executor.unregister_progress_hook(track_progress)

        if result.is_ok():
            await actor.complete(result.value.to_dict())
        else:
            await actor.fail(result.error.to_dict())
        return result

    async def get_status(self, execution_id: str) -> dict[str, Any] | None:
        return await self.registry.get_status(execution_id)

    async def cancel(self, execution_id: str) -> StatusResult:
        actor = self.registry.get(execution_id)
        if actor is None:
            status = await self.registry.get_status(execution_id)
            if status is None:
                return Err(StorageNotFoundError(execution_id, "execution registry"))
            return Err(
                StateTransitionError(
                    f"Execution {execution_id} is {status['status']} and not "
                    "running in this process"
                )
            )
        result = await actor.cancel()
        if result.is_ok():
            logger.info("Marked execution %s as cancelled", execution_id)
        return result

    async def wait(self, execution_id: str) -> ExecutionResult | None:
        """Await a running execution; None if it is not running here."""
        task = self._tasks.get(execution_id)
        if task is None:
            return None
        return await task

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.registry.shutdown()

