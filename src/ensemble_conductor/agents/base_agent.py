"""Agent contract: the only surface the executor sees of a unit of work."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ensemble_conductor.core.execution.state_manager import AgentStateContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SuspendSignal:
    """Returned by an agent that needs the flow to pause, e.g. for approval."""

    reason: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AgentResponse:
    """Result of one agent execution."""

    success: bool
    data: Any = None
    error: str | None = None
    cached: bool = False
    execution_time: float = 0.0
    suspend: SuspendSignal | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None, **kwargs: Any) -> AgentResponse:
        return cls(success=True, data=data, **kwargs)

    @classmethod
    def fail(cls, error: str, **kwargs: Any) -> AgentResponse:
        return cls(success=False, error=error, **kwargs)


@dataclass(frozen=True)
class AgentExecutionContext:
    """Everything an agent gets to see for one step."""

    input: Any
    ensemble_name: str
    step_index: int
    step_id: str
    execution_id: str
    previous_outputs: Mapping[str, Any] = field(default_factory=dict)
    state: AgentStateContext | None = None
    scoring: Mapping[str, Any] = field(default_factory=dict)
    config: Mapping[str, Any] = field(default_factory=dict)
    resume_input: Any = None


class BaseAgent(ABC):
    """Base class for agents.

    Subclasses implement ``run``. ``execute`` times the call and turns any
    exception into a failed ``AgentResponse`` so a misbehaving agent cannot
    crash the executor.
    """

    name: str = ""
    version: str | None = None
    description: str = ""

    def __init__(self, name: str | None = None, version: str | None = None) -> None:
        if name is not None:
            self.name = name
        if version is not None:
            self.version = version
        if not self.name:
            raise ValueError(f"{type(self).__name__} must have a name")

    @property
    def reference(self) -> str:
        """``name@version`` when versioned, else just the name."""
        return f"{self.name}@{self.version}" if self.version else self.name

    @abstractmethod
    async def run(self, context: AgentExecutionContext) -> AgentResponse | Any:
        """Do the work. Return an ``AgentResponse`` or plain output data."""

    async def execute(self, context: AgentExecutionContext) -> AgentResponse:
        start = time.perf_counter()
        try:
            result = await self.run(context)
        except Exception as e:
            logger.debug("Agent %s raised %s", self.name, e, exc_info=True)
            return AgentResponse.fail(
                str(e) or type(e).__name__,
                execution_time=time.perf_counter() - start,
            )

        elapsed = time.perf_counter() - start
        if isinstance(result, AgentResponse):
            if result.execution_time:
                return result
            return AgentResponse(
                success=result.success,
                data=result.data,
                error=result.error,
                cached=result.cached,
                execution_time=elapsed,
                suspend=result.suspend,
                metadata=result.metadata,
            )
        return AgentResponse.ok(result, execution_time=elapsed)
