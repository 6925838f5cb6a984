"""Registry of built-in agents.

The registry is a plain object built once at startup and handed to the
executor; nothing here is module-level mutable state.
"""

from collections.abc import Callable
from dataclasses import dataclass

from ensemble_conductor.agents.base_agent import BaseAgent
from ensemble_conductor.agents.hitl_agent import HITLAgent

AgentFactory = Callable[[], BaseAgent]


@dataclass(frozen=True)
class BuiltInAgentInfo:
    name: str
    factory: AgentFactory
    description: str = ""
    version: str | None = None


class BuiltInAgentRegistry:
    """Name -> factory map for agents that ship with the engine."""

    def __init__(self) -> None:
        self._agents: dict[str, BuiltInAgentInfo] = {}

    def register(
        self,
        name: str,
        factory: AgentFactory,
        description: str = "",
        version: str | None = None,
    ) -> None:
        if name in self._agents:
            raise ValueError(f"Built-in agent '{name}' is already registered")
        self._agents[name] = BuiltInAgentInfo(name, factory, description, version)

    def has(self, name: str) -> bool:
        return name in self._agents

    def create(self, name: str, version: str | None = None) -> BaseAgent | None:
        """Instantiate the named agent, or None if unknown or version differs."""
        info = self._agents.get(name)
        if info is None:
            return None
        if version is not None and info.version is not None and version != info.version:
            return None
        return info.factory()

    def list_agents(self) -> list[BuiltInAgentInfo]:
        return sorted(self._agents.values(), key=lambda info: info.name)


def create_default_registry() -> BuiltInAgentRegistry:
    """Registry containing every agent that ships with the engine."""
    registry = BuiltInAgentRegistry()
    registry.register("hitl", HITLAgent, HITLAgent.description)
    return registry
