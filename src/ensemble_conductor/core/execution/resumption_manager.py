"""One-time resumption tokens for suspended executions.

A token is issued when a run suspends and can be consumed exactly once: a
successful resume deletes it, a failed resume leaves it in place for another
try, and a second caller racing the first is turned away.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ensemble_conductor.core.errors import (
    ConductorError,
    EnsembleParseError,
    ResumptionError,
    StorageError,
    StorageNotFoundError,
)
from ensemble_conductor.core.execution.result_types import (
    ExecutionOutput,
    SuspendedExecutionState,
)
from ensemble_conductor.core.result import Err, Ok
from ensemble_conductor.storage.repository import Repository

if TYPE_CHECKING:
    from ensemble_conductor.core.execution.executor import Executor

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "resume_"
KEY_PREFIX = "resumption:"
STORE_NAME = "resumption store"


def generate_token() -> str:
    return f"{TOKEN_PREFIX}{uuid.uuid4().hex}"


class ResumptionManager:
    """Persists suspended executions behind opaque tokens."""

    def __init__(
        self,
        repository: Repository,
        ttl: int = 86400,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.repository = repository
        self.ttl = ttl
        self._clock = clock
        self._claims: set[str] = set()

    @staticmethod
    def _key(token: str) -> str:
        return f"{KEY_PREFIX}{token}"

    async def suspend(
        self, suspended: SuspendedExecutionState
    ) -> Ok[str] | Err[StorageError]:
        """Store the snapshot and return its token."""
        token = generate_token()
        record = suspended.with_metadata(
            token=token, expires_at=self._clock() + self.ttl
        ).to_dict()

        result = await self.repository.put(self._key(token), record, ttl=self.ttl)
        if result.is_err():
            return result

        logger.info(
            "Suspended execution %s of %s at step %d",
            suspended.execution_id,
            suspended.ensemble.name,
            suspended.resume_from_step,
        )
        return Ok(token)

    async def load(
        self, token: str
    ) -> Ok[SuspendedExecutionState] | Err[StorageNotFoundError | StorageError]:
        """Fetch a snapshot without consuming it."""
        result = await self.repository.get(self._key(token))
        if result.is_err():
            if isinstance(result.error, StorageNotFoundError):
                return Err(StorageNotFoundError(token, STORE_NAME))
            return result

        data = result.value
        expires_at = data.get("metadata", {}).get("expires_at")
        if expires_at is not None and self._clock() >= expires_at:
            await self.repository.delete(self._key(token))
            logger.info("Resumption token %s expired", token)
            return Err(StorageNotFoundError(token, STORE_NAME))

        try:
            return Ok(SuspendedExecutionState.from_dict(data))
        except (EnsembleParseError, KeyError, TypeError, ValueError) as e:
            return Err(StorageError(f"Stored execution for {token} is corrupt: {e}"))

    async def get_metadata(
        self, token: str
    ) -> Ok[dict[str, Any]] | Err[StorageNotFoundError | StorageError]:
        loaded = await self.load(token)
        return loaded.map(
            lambda s: {
                **s.metadata,
                "execution_id": s.execution_id,
                "ensemble": s.ensemble.name,
                "resume_from_step": s.resume_from_step,
            }
        )

    async def cancel(self, token: str) -> Ok[bool] | Err[ConductorError]:
        """Discard a suspended execution. ``Ok(False)`` if the token is unknown."""
        if token in self._claims:
            return Err(ResumptionError(f"Token {token} is being resumed"))
        result = await self.repository.delete(self._key(token))
        if result.is_ok() and result.value:
            logger.info("Cancelled resumption token %s", token)
        return result

    async def resume(
        self, token: str, executor: Executor, resume_input: Any = None
    ) -> Ok[ExecutionOutput] | Err[ConductorError]:
        """Consume ``token`` and continue the execution it refers to.

        Returns ``Err(ResumptionError)`` if another resume of the same token
        is in flight and ``Err(StorageNotFoundError)`` once it is consumed.
        """
        if token in self._claims:
            return Err(ResumptionError(f"Token {token} is already being resumed"))
        self._claims.add(token)
        try:
            loaded = await self.load(token)
            if loaded.is_err():
                return loaded

            logger.info("Resuming execution %s", loaded.value.execution_id)
            result = await executor.resume_execution(loaded.value, resume_input)
            if result.is_ok():
                await self.repository.delete(self._key(token))
                logger.info("Resumption token %s consumed", token)
            return result
        finally:
            self._claims.discard(token)

    async def approve(
        self,
        token: str,
        executor: Executor,
        actor: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> Ok[ExecutionOutput] | Err[ConductorError]:
        return await self.resume(
            token, executor, {**(data or {}), "approved": True, "actor": actor}
        )

    async def reject(
        self,
        token: str,
        executor: Executor,
        actor: str | None = None,
        reason: str | None = None,
    ) -> Ok[ExecutionOutput] | Err[ConductorError]:
        return await self.resume(
            token,
            executor,
            {"approved": False, "actor": actor, "reason": reason},
        )
