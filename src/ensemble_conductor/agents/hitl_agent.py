"""Human-in-the-loop approval agent."""

from typing import Any

from ensemble_conductor.agents.base_agent import (
    AgentExecutionContext,
    AgentResponse,
    BaseAgent,
    SuspendSignal,
)


class HITLAgent(BaseAgent):
    """Pauses the flow until someone approves or rejects.

    On first run it returns a suspension signal carrying the approval request.
    When the flow is resumed the decision arrives as ``resume_input`` and is
    surfaced to later steps through the executor's context, so this agent
    never runs twice for the same request.

    Step ``config`` keys: ``message``, ``approvers``, ``timeout`` (seconds).
    """

    name = "hitl"
    description = "Suspends the ensemble pending human approval"

    async def run(self, context: AgentExecutionContext) -> AgentResponse:
        request: dict[str, Any] = {
            "message": context.config.get("message", "Approval required"),
            "approvers": list(context.config.get("approvers", [])),
            "payload": context.input,
            "step": context.step_id,
        }
        if "timeout" in context.config:
            request["timeout"] = context.config["timeout"]

        return AgentResponse.ok(
            {"status": "pending_approval", "request": request},
            suspend=SuspendSignal(reason="approval_required", data=request),
        )
