"""Resumption endpoints for suspended executions."""

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel

from ensemble_conductor.web.api import get_conductor_service

router = APIRouter(prefix="/api/resume", tags=["resume"])


class ResumeRequest(BaseModel):
    input: Any = None


class ApproveRequest(BaseModel):
    actor: str | None = None
    data: dict[str, Any] | None = None


class RejectRequest(BaseModel):
    actor: str | None = None
    reason: str | None = None


@router.get("/{token}")
async def get_suspension(token: str) -> dict[str, Any]:
    """Describe a pending suspension without consuming its token."""
    result = await get_conductor_service().resumption_manager.get_metadata(token)
    return result.unwrap()


@router.post("/{token}")
async def resume(token: str, request: ResumeRequest | None = None) -> dict[str, Any]:
    service = get_conductor_service()
    resume_input = request.input if request else None
    result = await service.resumption_manager.resume(
        token, service.executor, resume_input
    )
    return result.unwrap().to_dict()


@router.post("/{token}/approve")
async def approve(token: str, request: ApproveRequest | None = None) -> dict[str, Any]:
    service = get_conductor_service()
    request = request or ApproveRequest()
    result = await service.resumption_manager.approve(
        token, service.executor, request.actor, request.data
    )
    return result.unwrap().to_dict()


@router.post("/{token}/reject")
async def reject(token: str, request: RejectRequest | None = None) -> dict[str, Any]:
    service = get_conductor_service()
    request = request or RejectRequest()
    result = await service.resumption_manager.reject(
        token, service.executor, request.actor, request.reason
    )
    return result.unwrap().to_dict()
