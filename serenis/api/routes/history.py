"""
History and telemetry API routes.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
import structlog

from serenis.api.dependencies import AccessTokenDep, FlowControllerDep
from serenis.api.schemas import HistoryResponse, SyncResponse
from serenis.domain.types import TelemetryEvent

log = structlog.get_logger(__name__)

router = APIRouter(tags=["history"])


def _history_response(entries) -> HistoryResponse:
    return HistoryResponse(entries=[e.to_json_dict() for e in entries], total=len(entries))


@router.get("/history", response_model=HistoryResponse)
async def list_history(
    controller: FlowControllerDep,
    q: str = Query(default="", max_length=200, description="Search belief, emotion or tags"),
):
    """Completed sessions, newest first, optionally filtered."""
    return _history_response(controller.search_in_history(q))


@router.delete("/history/{session_id}", response_model=HistoryResponse)
async def delete_history_entry(
    session_id: str,
    controller: FlowControllerDep,
    access_token: AccessTokenDep,
):
    removed = await controller.delete_history_entry(session_id, access_token)
    if not removed:
        raise HTTPException(status_code=404, detail=f"History entry not found: {session_id}")
    return _history_response(controller.history)


@router.post("/history/sync", response_model=SyncResponse)
async def sync_history(controller: FlowControllerDep, access_token: AccessTokenDep):
    """Upload local history to the cloud and merge the cloud copy back in."""
    result = await controller.sync_history(access_token)
    return SyncResponse(
        success=result.success,
        synced=result.synced,
        error=result.error,
        history=_history_response(controller.history),
    )


@router.get("/telemetry", tags=["system"])
async def list_telemetry(
    controller: FlowControllerDep,
    event: Optional[TelemetryEvent] = Query(default=None),
    session_id: Optional[str] = Query(default=None),
):
    """Locally recorded flow events, oldest first."""
    if event is not None:
        events = controller.telemetry.get_events_by_type(event)
        if session_id is not None:
            events = [e for e in events if e.session_id == session_id]
    else:
        events = controller.telemetry.get_events(session_id)

    return {"events": [e.to_json_dict() for e in events], "total": len(events)}
