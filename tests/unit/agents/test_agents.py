"""Tests for the agent contract and built-in agents."""

import asyncio

import pytest

from ensemble_conductor.agents import (
    AgentExecutionContext,
    AgentResponse,
    BaseAgent,
    BuiltInAgentRegistry,
    FunctionAgent,
    HITLAgent,
    create_default_registry,
)


def context(**overrides: object) -> AgentExecutionContext:
    values: dict[str, object] = {
        "input": {"doc": "text"},
        "ensemble_name": "demo",
        "step_index": 0,
        "step_id": "step",
        "execution_id": "exec-1",
    }
    values.update(overrides)
    return AgentExecutionContext(**values)  # type: ignore[arg-type]


class TestBaseAgent:
    def test_requires_name(self) -> None:
        class Nameless(BaseAgent):
            async def run(self, context: AgentExecutionContext) -> None:
                return None

        with pytest.raises(ValueError, match="must have a name"):
            Nameless()

    def test_reference_includes_version(self) -> None:
        assert FunctionAgent("a", lambda ctx: None).reference == "a"
        assert FunctionAgent("a", lambda ctx: None, version="1.2").reference == "a@1.2"

    @pytest.mark.asyncio
    async def test_plain_return_wrapped(self) -> None:
        response = await FunctionAgent("a", lambda ctx: 42).execute(context())

        assert response.success
        assert response.data == 42
        assert response.execution_time >= 0

    @pytest.mark.asyncio
    async def test_exception_becomes_failed_response(self) -> None:
        """Test that a raising agent yields a failure instead of propagating."""

        def explode(ctx: AgentExecutionContext) -> None:
            raise KeyError("missing")

        response = await FunctionAgent("a", explode).execute(context())

        assert not response.success
        assert "missing" in (response.error or "")

    @pytest.mark.asyncio
    async def test_response_fields_preserved(self) -> None:
        agent = FunctionAgent(
            "a", lambda ctx: AgentResponse.ok("hit", cached=True, metadata={"k": 1})
        )

        response = await agent.execute(context())

        assert response.cached
        assert response.metadata == {"k": 1}

    @pytest.mark.asyncio
    async def test_async_function(self) -> None:
        async def fetch(ctx: AgentExecutionContext) -> str:
            await asyncio.sleep(0)
            return ctx.execution_id

        response = await FunctionAgent("a", fetch).execute(context())

        assert response.data == "exec-1"


class TestHITLAgent:
    @pytest.mark.asyncio
    async def test_requests_approval(self) -> None:
        response = await HITLAgent().execute(
            context(
                config={"message": "Deploy?", "approvers": ["ops"], "timeout": 600}
            )
        )

        assert response.success
        assert response.suspend is not None
        assert response.suspend.reason == "approval_required"
        assert response.data["status"] == "pending_approval"
        assert response.suspend.data == {
            "message": "Deploy?",
            "approvers": ["ops"],
            "payload": {"doc": "text"},
            "step": "step",
            "timeout": 600,
        }

    @pytest.mark.asyncio
    async def test_defaults(self) -> None:
        response = await HITLAgent().execute(context())

        assert response.data["request"]["message"] == "Approval required"
        assert "timeout" not in response.data["request"]


class TestBuiltInAgentRegistry:
    def test_default_registry_has_hitl(self) -> None:
        registry = create_default_registry()

        assert registry.has("hitl")
        assert isinstance(registry.create("hitl"), HITLAgent)
        assert [info.name for info in registry.list_agents()] == ["hitl"]

    def test_version_matching(self) -> None:
        registry = BuiltInAgentRegistry()
        registry.register(
            "tool", lambda: FunctionAgent("tool", lambda c: 1), version="2"
        )

        assert registry.create("tool", "2") is not None
        assert registry.create("tool") is not None
        assert registry.create("tool", "3") is None
        assert registry.create("other") is None

    def test_duplicate_registration_rejected(self) -> None:
        registry = BuiltInAgentRegistry()
        registry.register("tool", lambda: FunctionAgent("tool", lambda c: 1))

        with pytest.raises(ValueError, match="already registered"):
            registry.register("tool", lambda: FunctionAgent("tool", lambda c: 2))
