"""Shared test fixtures and configuration."""

from collections.abc import Callable
from typing import Any

import pytest

from ensemble_conductor.agents import AgentExecutionContext, FunctionAgent
from ensemble_conductor.core.execution.executor import Executor
from ensemble_conductor.core.execution.resumption_manager import ResumptionManager
from ensemble_conductor.storage import MemoryRepository

AgentFn = Callable[[AgentExecutionContext], Any]


class SleepRecorder:
    """Stand-in for ``asyncio.sleep`` that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def no_sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_agent() -> Callable[..., FunctionAgent]:
    """Build a FunctionAgent returning ``result`` or running ``fn``."""

    def factory(
        name: str,
        result: Any = None,
        *,
        fn: AgentFn | None = None,
        version: str | None = None,
    ) -> FunctionAgent:
        return FunctionAgent(name, fn or (lambda ctx: result), version=version)

    return factory


@pytest.fixture
def memory_repository() -> MemoryRepository:
    return MemoryRepository()


@pytest.fixture
def resumption_manager(memory_repository: MemoryRepository) -> ResumptionManager:
    return ResumptionManager(memory_repository, ttl=3600)


@pytest.fixture
def executor(
    no_sleep: SleepRecorder, resumption_manager: ResumptionManager
) -> Executor:
    """Executor with in-memory resumption and no real backoff waits."""
    return Executor(resumption_manager=resumption_manager, sleep=no_sleep)
