"""Agent contract and built-in agents."""

from ensemble_conductor.agents.base_agent import (
    AgentExecutionContext,
    AgentResponse,
    BaseAgent,
    SuspendSignal,
)
from ensemble_conductor.agents.function_agent import FunctionAgent
from ensemble_conductor.agents.hitl_agent import HITLAgent
from ensemble_conductor.agents.registry import (
    BuiltInAgentRegistry,
    create_default_registry,
)

__all__ = [
    "AgentExecutionContext",
    "AgentResponse",
    "BaseAgent",
    "BuiltInAgentRegistry",
    "FunctionAgent",
    "HITLAgent",
    "SuspendSignal",
    "create_default_registry",
]
