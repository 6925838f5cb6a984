"""Shared fixtures for web API tests."""

import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from ensemble_conductor.agents import AgentExecutionContext, FunctionAgent
from ensemble_conductor.core.config.engine_config import EngineConfig
from ensemble_conductor.services import ConductorService
from ensemble_conductor.storage import MemoryRepository
from ensemble_conductor.web.api import set_conductor_service
from ensemble_conductor.web.server import create_app

ENSEMBLES = {
    "greet.yaml": "name: greet\ndescription: Shout a greeting\nflow:\n"
    "  - agent: upper\n    input: ${input.text}\n",
    "approval.yaml": "name: approval\nflow:\n"
    "  - agent: hitl\n    config:\n      message: Publish?\n"
    "  - agent: decide\n",
    "broken.yaml": "name: broken\nflow:\n  - agent: explode\n",
    "unknown.yaml": "name: unknown\nflow:\n  - agent: ghost\n",
}


def explode(ctx: AgentExecutionContext) -> None:
    raise RuntimeError("agent crashed")


@pytest.fixture
def service(tmp_path: Path) -> ConductorService:
    """Service over a temporary project with a few ensembles."""
    ensembles_dir = tmp_path / ".conductor" / "ensembles"
    ensembles_dir.mkdir(parents=True)
    for filename, content in ENSEMBLES.items():
        (ensembles_dir / filename).write_text(content)

    service = ConductorService(
        EngineConfig(status_close_grace=0),
        repository=MemoryRepository(),
        project_dir=tmp_path,
    )
    service.register_agent(FunctionAgent("upper", lambda ctx: str(ctx.input).upper()))
    service.register_agent(FunctionAgent("decide", lambda ctx: ctx.resume_input))
    service.register_agent(FunctionAgent("explode", explode))
    return service


@pytest.fixture
def client(service: ConductorService) -> Iterator[TestClient]:
    """Create a TestClient for the web app bound to the test service."""
    set_conductor_service(service)
    with TestClient(create_app()) as test_client:
        yield test_client
    set_conductor_service(None)


@pytest.fixture
def wait_for_status(client: TestClient) -> Callable[..., dict[str, Any]]:
    """Poll an execution until it reaches a terminal status."""

    def wait(execution_id: str, timeout: float = 2.0) -> dict[str, Any]:
        deadline = time.monotonic() + timeout
        while True:
            data = client.get(f"/api/executions/{execution_id}").json()
            if data["status"] in ("completed", "failed", "cancelled"):
                return data
            if time.monotonic() > deadline:
                raise AssertionError(f"Execution {execution_id} is {data['status']}")
            time.sleep(0.01)

    return wait
