"""
Session API routes.

Endpoints for the active session: stage navigation, profile, diagnosis,
privacy mode, tags and reset.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException
import structlog

from serenis.api.dependencies import FlowControllerDep
from serenis.api.schemas import (
    PrivacyRequest,
    ProfileRequest,
    ResetRequest,
    SessionStateResponse,
    StageRequest,
    TagRequest,
    guard_denied,
)
from serenis.domain.profile import calculate_profile
from serenis.domain.types import DiagnosisData, PrivacyMode

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/session", tags=["session"])


@router.get("", response_model=SessionStateResponse)
async def get_session(controller: FlowControllerDep):
    """Current session, stage and derived flags."""
    return SessionStateResponse.from_controller(controller)


@router.post("/stage", response_model=SessionStateResponse)
async def go_to_stage(request: StageRequest, controller: FlowControllerDep):
    """Navigate to a stage (IDLE, TEST, DIAGNOSIS, RITUAL or COMPLETE, any case).

    Returns 409 with the guard's suggestion if refused.
    """
    guard = controller.go_to_stage(request.stage)
    if not guard:
        return guard_denied(controller, guard)
    return SessionStateResponse.from_controller(controller)


@router.put("/profile", response_model=SessionStateResponse)
async def set_profile(request: ProfileRequest, controller: FlowControllerDep):
    """Store the ACT profile, scoring raw questionnaire answers when given."""
    if request.answers is not None:
        try:
            profile = calculate_profile(request.answers)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
    else:
        profile = request.result

    await controller.set_act_profile(profile)
    return SessionStateResponse.from_controller(controller)


@router.put("/diagnosis", response_model=SessionStateResponse)
async def set_diagnosis(diagnosis: DiagnosisData, controller: FlowControllerDep):
    await controller.set_diagnosis(diagnosis)
    return SessionStateResponse.from_controller(controller)


@router.put("/privacy", response_model=SessionStateResponse)
async def set_privacy_mode(request: PrivacyRequest, controller: FlowControllerDep):
    await controller.set_privacy_mode(request.mode)
    return SessionStateResponse.from_controller(controller)


@router.post("/tags", response_model=SessionStateResponse)
async def add_tag(request: TagRequest, controller: FlowControllerDep):
    await controller.add_tag(request.tag)
    return SessionStateResponse.from_controller(controller)


@router.post("/reset", response_model=SessionStateResponse)
async def reset_session(controller: FlowControllerDep, request: Optional[ResetRequest] = None):
    """Discard the session (stored record included) and start a fresh one."""
    await controller.reset_session(request.privacy_mode if request else PrivacyMode.PERSIST)
    return SessionStateResponse.from_controller(controller)


@router.post("/new-ritual", response_model=SessionStateResponse)
async def start_new_ritual(controller: FlowControllerDep):
    """Keep the profile, clear diagnosis, dialogue and ritual progress."""
    await controller.start_new_ritual()
    return SessionStateResponse.from_controller(controller)
