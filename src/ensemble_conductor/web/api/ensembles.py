"""Ensembles API endpoints."""

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel

from ensemble_conductor.web.api import get_conductor_service

router = APIRouter(prefix="/api/ensembles", tags=["ensembles"])


class ExecuteRequest(BaseModel):
    """Request body for ensemble execution."""

    input: Any = None


@router.get("")
async def list_ensembles() -> list[dict[str, Any]]:
    return get_conductor_service().list_ensembles()


@router.post("/{name}/execute")
async def execute_ensemble(name: str, request: ExecuteRequest) -> dict[str, Any]:
    """Run an ensemble to completion (or suspension) and return its output."""
    service = get_conductor_service()
    ensemble = service.load_ensemble(name)
    service.check_ensemble(ensemble)
    result = await service.executor.execute_ensemble(ensemble, request.input)
    return result.unwrap().to_dict()


@router.post("/{name}/execute-async", status_code=202)
async def execute_ensemble_async(
    name: str, request: ExecuteRequest
) -> dict[str, Any]:
    """Start an ensemble in the background; poll or stream its status."""
    service = get_conductor_service()
    ensemble = service.load_ensemble(name)
    service.check_ensemble(ensemble)
    execution_id = await service.async_service.start(ensemble, request.input)
    return {
        "execution_id": execution_id,
        "status_url": f"/api/executions/{execution_id}",
        "stream_url": f"/api/executions/{execution_id}/stream",
    }
