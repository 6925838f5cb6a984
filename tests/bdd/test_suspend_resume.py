"""BDD step definitions for suspending and resuming ensembles."""

import asyncio
from typing import Any

from pytest_bdd import given, parsers, scenarios, then, when

from ensemble_conductor.agents import FunctionAgent
from ensemble_conductor.core.errors import StorageNotFoundError

scenarios("features/suspend-resume.feature")

PUBLISH_ENSEMBLE = """
name: publish
flow:
  - agent: hitl
    config:
      message: Publish?
  - agent: publish
"""


def _last_output(bdd_context: dict[str, Any]) -> Any:
    return bdd_context["results"][-1].unwrap()


@given("an ensemble that asks for approval before publishing")
def setup_approval_ensemble(bdd_context: dict[str, Any]) -> None:
    bdd_context["executor"].register_agent(
        FunctionAgent("publish", lambda ctx: ctx.resume_input)
    )


@when(parsers.parse('the ensemble runs with input "{text}"'))
def run_ensemble(bdd_context: dict[str, Any], text: str) -> None:
    executor = bdd_context["executor"]
    result = asyncio.run(executor.execute_from_yaml(PUBLISH_ENSEMBLE, text))
    bdd_context["results"].append(result)
    bdd_context["token"] = result.unwrap().resume_token


@when(parsers.parse('the token is approved by "{actor}"'))
def approve_token(bdd_context: dict[str, Any], actor: str) -> None:
    manager = bdd_context["resumption_manager"]
    result = asyncio.run(
        manager.approve(bdd_context["token"], bdd_context["executor"], actor)
    )
    bdd_context["results"].append(result)


@when(parsers.parse('the token is rejected by "{actor}" because "{reason}"'))
def reject_token(bdd_context: dict[str, Any], actor: str, reason: str) -> None:
    manager = bdd_context["resumption_manager"]
    result = asyncio.run(
        manager.reject(bdd_context["token"], bdd_context["executor"], actor, reason)
    )
    bdd_context["results"].append(result)


@when("the suspension is cancelled")
def cancel_suspension(bdd_context: dict[str, Any]) -> None:
    manager = bdd_context["resumption_manager"]
    assert asyncio.run(manager.cancel(bdd_context["token"])).unwrap() is True


@then("the execution is suspended with a resume token")
def check_suspended(bdd_context: dict[str, Any]) -> None:
    output = _last_output(bdd_context)
    assert output.status == "suspended"
    assert output.resume_token.startswith("resume_")
    assert output.suspended.resume_from_step == 1


@then(parsers.parse('the approval request carries the payload "{payload}"'))
def check_request(bdd_context: dict[str, Any], payload: str) -> None:
    request = _last_output(bdd_context).suspended.metadata["request"]
    assert request["message"] == "Publish?"
    assert request["payload"] == payload


@then(parsers.parse('the publish step receives an approval from "{actor}"'))
def check_approved(bdd_context: dict[str, Any], actor: str) -> None:
    output = _last_output(bdd_context)
    assert output.status == "completed"
    assert output.output == {"approved": True, "actor": actor}


@then(parsers.parse('the publish step receives a rejection because "{reason}"'))
def check_rejected(bdd_context: dict[str, Any], reason: str) -> None:
    output = _last_output(bdd_context).output
    assert output["approved"] is False
    assert output["reason"] == reason


@then("the token cannot be used again")
def check_token_consumed(bdd_context: dict[str, Any]) -> None:
    manager = bdd_context["resumption_manager"]
    result = asyncio.run(manager.resume(bdd_context["token"], bdd_context["executor"]))
    assert isinstance(result.error, StorageNotFoundError)
