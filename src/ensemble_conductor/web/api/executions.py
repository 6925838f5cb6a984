"""Live execution status endpoints."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from ensemble_conductor.web.api import get_conductor_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/executions", tags=["executions"])


@router.get("/{execution_id}")
async def get_execution(execution_id: str) -> dict[str, Any]:
    status = await get_conductor_service().async_service.get_status(execution_id)
    if status is None:
        raise HTTPException(
            status_code=404, detail=f"Execution '{execution_id}' not found"
        )
    return status


@router.post("/{execution_id}/cancel")
async def cancel_execution(execution_id: str) -> dict[str, Any]:
    """Mark an execution as cancelled. Steps already running are not interrupted."""
    result = await get_conductor_service().async_service.cancel(execution_id)
    return result.unwrap()


@router.websocket("/{execution_id}/stream")
async def stream_execution(websocket: WebSocket, execution_id: str) -> None:
    """Send the current state, then every status event until the run ends."""
    service = get_conductor_service()
    actor = service.status_registry.get(execution_id)
    await websocket.accept()

    if actor is None:
        status = await service.status_registry.get_status(execution_id)
        if status is None:
            await websocket.send_json(
                {"type": "error", "error": f"Execution '{execution_id}' not found"}
            )
        else:
            await websocket.send_json({"type": "initial_state", "state": status})
        await websocket.close()
        return

    subscription = actor.subscribe()
    try:
        async for message in subscription:
            await websocket.send_json(message)
    except WebSocketDisconnect:
        logger.debug("Stream client for %s disconnected", execution_id)
        return
    finally:
        subscription.close()
    await websocket.close()
