"""Single-writer live status for async executions.

Each ``ExecutionState`` owns one execution id. All mutations are commands
placed on a FIFO mailbox and applied by a single worker task, so updates to
one execution never interleave. After each command the full state is
persisted and the event is pushed to every subscriber.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from ensemble_conductor.core.errors import (
    ConductorError,
    InternalError,
    StateTransitionError,
)
from ensemble_conductor.core.result import Err, Ok
from ensemble_conductor.storage.repository import Repository

logger = logging.getLogger(__name__)

ExecutionStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})
KEY_PREFIX = "execution:"

StatusResult = Ok[dict[str, Any]] | Err[ConductorError]

_CLOSED = object()


@dataclass
class _Command:
    kind: str
    payload: dict[str, Any]
    future: asyncio.Future[StatusResult] = field(repr=False)


class Subscription:
    """Async iterator over status messages for one subscriber.

    The first message is always ``{"type": "initial_state", "state": ...}``.
    Iteration ends when the execution's channels are closed.
    """

    def __init__(self, owner: ExecutionState, queue: asyncio.Queue[Any]) -> None:
        self._owner = owner
        self._queue = queue

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> dict[str, Any]:
        message = await self._queue.get()
        if message is _CLOSED:
            raise StopAsyncIteration
        return message

    async def next(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Next message, or None once closed."""
        try:
            return await asyncio.wait_for(self.__anext__(), timeout)
        except StopAsyncIteration:
            return None

    def close(self) -> None:
        self._owner._unsubscribe(self._queue)


class ExecutionState:
    """Status actor for a single execution id."""

    def __init__(
        self,
        execution_id: str,
        repository: Repository,
        close_grace: float = 1.0,
        max_queue_size: int = 256,
        on_closed: Callable[[ExecutionState], None] | None = None,
    ) -> None:
        self.execution_id = execution_id
        self.repository = repository
        self.close_grace = close_grace
        self.max_queue_size = max_queue_size
        self._state: dict[str, Any] | None = None
        self._mailbox: asyncio.Queue[_Command] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._subscribers: list[asyncio.Queue[Any]] = []
        self._closer: asyncio.Task[None] | None = None
        self._on_closed = on_closed

    @property
    def key(self) -> str:
        return f"{KEY_PREFIX}{self.execution_id}"

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def finished(self) -> bool:
        return self._state is not None and self._state["status"] in TERMINAL_STATUSES

    @property
    def worker_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    # Commands

    async def start(
        self, total_steps: int, ensemble: str | None = None
    ) -> StatusResult:
        return await self._call("start", total_steps=total_steps, ensemble=ensemble)

    async def progress(
        self, step: str, index: int, output: Any = None
    ) -> StatusResult:
        return await self._call("progress", step=step, index=index, output=output)

    async def complete(self, result: Any) -> StatusResult:
        return await self._call("complete", result=result)

    async def fail(self, error: Any) -> StatusResult:
        return await self._call("fail", error=error)

    async def cancel(self) -> StatusResult:
        return await self._call("cancel")

    def submit(self, kind: str, **payload: Any) -> asyncio.Future[StatusResult]:
        """Enqueue a command without waiting, for use from sync callbacks."""
        future = self._enqueue(kind, payload)
        future.add_done_callback(self._log_rejection)
        return future

    async def get_status(self) -> dict[str, Any] | None:
        if self._state is not None:
            return copy.deepcopy(self._state)
        stored = await self.repository.get(self.key)
        return stored.value if stored.is_ok() else None

    def subscribe(self) -> Subscription:
        queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=self.max_queue_size)
        queue.put_nowait(
            {"type": "initial_state", "state": copy.deepcopy(self._state)}
        )
        self._subscribers.append(queue)
        if self.finished:
            self._schedule_close()
        return Subscription(self, queue)

    async def close(self) -> None:
        """Stop the worker and close every subscriber channel."""
        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None
        if self._closer is not None:
            self._closer.cancel()
        self._close_channels()

    # Mailbox

    def _enqueue(
        self, kind: str, payload: dict[str, Any]
    ) -> asyncio.Future[StatusResult]:
        loop = asyncio.get_running_loop()
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain_mailbox())
        future: asyncio.Future[StatusResult] = loop.create_future()
        self._mailbox.put_nowait(_Command(kind, payload, future))
        return future

    async def _call(self, kind: str, **payload: Any) -> StatusResult:
        return await self._enqueue(kind, payload)

    async def _drain_mailbox(self) -> None:
        """Apply commands until the execution has finished and the mailbox is empty."""
        while True:
            command = await self._mailbox.get()
            try:
                result = await self._apply(command.kind, command.payload)
            except Exception as e:
                logger.error("Status update %s failed: %s", command.kind, e)
                result = Err(InternalError(f"Status update failed: {e}"))
            if not command.future.done():
                command.future.set_result(result)
            if self.finished and self._mailbox.empty():
                return

    def _log_rejection(self, future: asyncio.Future[StatusResult]) -> None:
        if future.cancelled():
            return
        result = future.result()
        if result.is_err():
            logger.debug(
                "Status update for %s rejected: %s", self.execution_id, result.error
            )

    async def _load(self) -> None:
        if self._state is None:
            stored = await self.repository.get(self.key)
            if stored.is_ok():
                self._state = stored.value

    async def _apply(self, kind: str, payload: dict[str, Any]) -> StatusResult:
        await self._load()
        now = time.time()

        if kind == "start":
            if self._state is not None and self._state["status"] != "pending":
                return Err(
                    StateTransitionError(
                        f"Execution {self.execution_id} already started"
                    )
                )
            self._state = {
                "execution_id": self.execution_id,
                "ensemble": payload.get("ensemble"),
                "status": "running",
                "total_steps": payload["total_steps"],
                "completed_steps": 0,
                "current_step": None,
                "result": None,
                "error": None,
                "events": [],
                "started_at": now,
                "updated_at": now,
            }
        elif self._state is None:
            return Err(
                InternalError(f"Execution {self.execution_id} was never started")
            )
        elif self._state["status"] in TERMINAL_STATUSES:
            return Err(
                StateTransitionError(
                    f"Execution {self.execution_id} is already {self._state['status']}"
                )
            )
        elif kind == "progress":
            self._state["current_step"] = payload["step"]
            self._state["completed_steps"] = payload["index"] + 1
        elif kind == "complete":
            self._state["status"] = "completed"
            self._state["result"] = payload["result"]
        elif kind == "fail":
            self._state["status"] = "failed"
            self._state["error"] = payload["error"]
        elif kind == "cancel":
            self._state["status"] = "cancelled"
        else:
            return Err(InternalError(f"Unknown status command: {kind}"))

        event = {"type": kind, "timestamp": now, **payload}
        self._state["events"].append(event)
        self._state["updated_at"] = now

        stored = await self.repository.put(self.key, self._state)
        if stored.is_err():
            return stored

        self._broadcast(
            {"type": "event", "event": event, "status": self._state["status"]}
        )
        if self.finished:
            self._schedule_close()
        return Ok(copy.deepcopy(self._state))

    # Fan-out

    def _broadcast(self, message: dict[str, Any]) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(copy.deepcopy(message))
            except asyncio.QueueFull:
                logger.debug("Pruning slow subscriber of %s", self.execution_id)
                self._unsubscribe(queue)

    def _unsubscribe(self, queue: asyncio.Queue[Any]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _schedule_close(self) -> None:
        if self._closer is not None and not self._closer.done():
            return

        async def close_later() -> None:
            await asyncio.sleep(self.close_grace)
            self._close_channels()
            if self._on_closed is not None:
                self._on_closed(self)

        self._closer = asyncio.get_running_loop().create_task(close_later())

    def _close_channels(self) -> None:
        for queue in self._subscribers:
            while True:
                try:
                    queue.put_nowait(_CLOSED)
                    break
                except asyncio.QueueFull:
                    queue.get_nowait()
        self._subscribers.clear()


class ExecutionStateRegistry:
    """One ``ExecutionState`` per execution id, sharing a repository.

    Finished executions are dropped once their channels close; their status
    is then served from the repository.
    """

    def __init__(self, repository: Repository, close_grace: float = 1.0) -> None:
        self.repository = repository
        self.close_grace = close_grace
        self._states: dict[str, ExecutionState] = {}

    def get_or_create(self, execution_id: str) -> ExecutionState:
        if execution_id not in self._states:
            self._states[execution_id] = ExecutionState(
                execution_id,
                self.repository,
                self.close_grace,
                on_closed=self._evict,
            )
        return self._states[execution_id]

    def get(self, execution_id: str) -> ExecutionState | None:
        return self._states.get(execution_id)

    @property
    def active_count(self) -> int:
        return len(self._states)

    def _evict(self, state: ExecutionState) -> None:
        if self._states.get(state.execution_id) is state:
            del self._states[state.execution_id]
            logger.debug("Released status actor for %s", state.execution_id)

    async def get_status(self, execution_id: str) -> dict[str, Any] | None:
        state = self._states.get(execution_id)
        if state is not None:
            return await state.get_status()
        stored = await self.repository.get(f"{KEY_PREFIX}{execution_id}")
        return stored.value if stored.is_ok() else None

    async def shutdown(self) -> None:
        for state in list(self._states.values()):
            await state.close()
        self._states.clear()
