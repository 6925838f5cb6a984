"""Adapter turning a plain callable into an agent."""

import inspect
from collections.abc import Callable
from typing import Any

from ensemble_conductor.agents.base_agent import (
    AgentExecutionContext,
    AgentResponse,
    BaseAgent,
)


class FunctionAgent(BaseAgent):
    """Wraps a sync or async ``fn(context)``."""

    def __init__(
        self,
        name: str,
        fn: Callable[[AgentExecutionContext], Any],
        version: str | None = None,
        description: str = "",
    ) -> None:
        super().__init__(name, version)
        self._fn = fn
        self.description = description

    async def run(self, context: AgentExecutionContext) -> AgentResponse | Any:
        result = self._fn(context)
        if inspect.isawaitable(result):
            result = await result
        return result
