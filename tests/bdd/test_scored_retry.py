"""BDD step definitions for scored retries."""

import asyncio
from typing import Any

from pytest_bdd import given, parsers, scenarios, then, when

from ensemble_conductor.agents import AgentExecutionContext, FunctionAgent
from ensemble_conductor.core.errors import EnsembleExecutionError

scenarios("features/scored-retry.feature")

SCORED_ENSEMBLE = """
name: scored
scoring:
  enabled: true
  max_retries: 2
  initial_backoff: 10
state:
  initial:
    draft: null
flow:
  - agent: writer
    state:
      set: [draft]
    scoring:
      evaluator: judge
      on_failure: {on_failure}
"""


def _write(ctx: AgentExecutionContext) -> str:
    draft = f"draft-{ctx.scoring['attempt']}"
    ctx.state.set_state({"draft": draft})
    return draft


@given(parsers.parse("a writer whose drafts score {first:f} and then {second:f}"))
def setup_improving_writer(
    bdd_context: dict[str, Any], first: float, second: float
) -> None:
    executor = bdd_context["executor"]
    executor.register_agent(FunctionAgent("writer", _write))
    executor.register_evaluator(
        "judge", lambda output, attempt, previous: second if attempt > 1 else first
    )


@given(parsers.parse("a writer whose drafts always score {score:f}"))
def setup_poor_writer(bdd_context: dict[str, Any], score: float) -> None:
    executor = bdd_context["executor"]
    executor.register_agent(FunctionAgent("writer", _write))
    executor.register_evaluator("judge", lambda output, attempt, previous: score)


@given("the writer aborts on failure")
def abort_on_failure(bdd_context: dict[str, Any]) -> None:
    bdd_context["on_failure"] = "abort"


@when("the scored ensemble runs")
def run_scored(bdd_context: dict[str, Any]) -> None:
    text = SCORED_ENSEMBLE.format(on_failure=bdd_context.get("on_failure", "retry"))
    bdd_context["result"] = asyncio.run(bdd_context["executor"].execute_from_yaml(text))


@then(parsers.parse('the output is "{expected}"'))
def check_output(bdd_context: dict[str, Any], expected: str) -> None:
    assert bdd_context["result"].unwrap().output == expected


@then(parsers.parse("the writer was retried {count:d} time"))
def check_retries(bdd_context: dict[str, Any], count: int) -> None:
    scoring = bdd_context["result"].unwrap().scoring
    assert scoring.retry_count == {"writer": count}


@then(parsers.parse('the recorded state draft is "{expected}"'))
def check_state(bdd_context: dict[str, Any], expected: str) -> None:
    report = bdd_context["result"].unwrap().state_report
    assert report["state"] == {"draft": expected}


@then(parsers.parse('the ensemble fails at step "{step}"'))
def check_failure(bdd_context: dict[str, Any], step: str) -> None:
    error = bdd_context["result"].error
    assert isinstance(error, EnsembleExecutionError)
    assert error.step == step
