"""Tests for the web server module."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from ensemble_conductor.core.errors import (
    AgentExecutionError,
    ConductorError,
    EnsembleNotFoundError,
    EnsembleParseError,
    ResumptionError,
    StateTransitionError,
    StorageNotFoundError,
)
from ensemble_conductor.web.server import create_app, status_for_error


class TestWebServer:
    """Tests for web server functionality."""

    def test_create_app_returns_fastapi_instance(self) -> None:
        """Test that create_app returns a FastAPI application."""
        assert isinstance(create_app(), FastAPI)

    def test_health_endpoint_returns_ok(self, client: TestClient) -> None:
        """Test that /health reports status and version."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "version" in data

    def test_routes_registered(self) -> None:
        paths = {route.path for route in create_app().routes}

        assert "/api/ensembles/{name}/execute" in paths
        assert "/api/executions/{execution_id}/stream" in paths
        assert "/api/resume/{token}/approve" in paths


class TestStatusForError:
    @pytest.mark.parametrize(
        ("error", "status"),
        [
            (EnsembleNotFoundError("x"), 404),
            (StorageNotFoundError("k", "memory"), 404),
            (EnsembleParseError("x", ["name: required"]), 400),
            (ResumptionError("busy"), 409),
            (StateTransitionError("done"), 409),
            (AgentExecutionError("a", "boom"), 500),
            (ConductorError("generic"), 500),
        ],
    )
    def test_mapping(self, error: ConductorError, status: int) -> None:
        assert status_for_error(error) == status
