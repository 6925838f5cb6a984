"""FastAPI server exposing execution, status and resumption endpoints."""

import logging
from importlib.metadata import PackageNotFoundError, version

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException
from fastapi.responses import JSONResponse

from ensemble_conductor.core.errors import (
    AgentConfigurationError,
    ConductorError,
    ConfigurationError,
    EnsembleNotFoundError,
    EnsembleParseError,
    ResumptionError,
    StateTransitionError,
    StorageNotFoundError,
)
from ensemble_conductor.web.api import ensembles, executions, resume

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[ConductorError], int]] = [
    (EnsembleNotFoundError, 404),
    (StorageNotFoundError, 404),
    (EnsembleParseError, 400),
    (ConfigurationError, 400),
    (AgentConfigurationError, 400),
    (ResumptionError, 409),
    (StateTransitionError, 409),
]


def get_version() -> str:
    try:
        return version("ensemble-conductor")
    except PackageNotFoundError:
        return "0.0.0"


def status_for_error(error: ConductorError) -> int:
    """HTTP status code for an engine error."""
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="ensemble-conductor",
        description="Run, monitor and resume conductor ensembles",
        version=get_version(),
    )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(ConductorError)
    async def conductor_error_handler(
        request: Request, exc: ConductorError
    ) -> JSONResponse:
        status = status_for_error(exc)
        if status >= 500:
            logger.error("Request failed: %s", exc)
        return JSONResponse(status_code=status, content={"error": exc.to_dict()})

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error("Unhandled error: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)},
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": get_version()}

    app.include_router(ensembles.router)
    app.include_router(executions.router)
    app.include_router(resume.router)
    return app
