"""
Ritual API routes.

Endpoints for the six-phase Socratic ritual: start, questions, answers,
pause/resume, metrics, somatic breaks, completion and the closing summary.
"""

from typing import Optional

from fastapi import APIRouter, Query
import structlog

from serenis.api.dependencies import AccessTokenDep, FlowControllerDep
from serenis.api.schemas import (
    CompleteRequest,
    CrisisSchema,
    DialogueEntryRequest,
    DialogueEntryResponse,
    MetricsResponse,
    QuestionResponse,
    SessionStateResponse,
    SomaticBreakRequest,
    SummaryResponse,
    guard_denied,
)
from serenis.domain.crisis import CRISIS_RESOURCES
from serenis.domain.types import ACTMetrics, SummaryMode

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/ritual", tags=["ritual"])


@router.post("/start", response_model=SessionStateResponse)
async def start_ritual(controller: FlowControllerDep):
    """Enter the ritual. Returns 409 until a profile and valid diagnosis exist."""
    guard = await controller.start_ritual()
    if not guard:
        return guard_denied(controller, guard)
    return SessionStateResponse.from_controller(controller)


@router.get("/question", response_model=QuestionResponse)
async def get_question(controller: FlowControllerDep):
    """
    Question for the current phase.

    AI-generated when available; otherwise (or on any provider failure) the
    phase's static question. Repeated failures trip the circuit breaker.
    """
    result = await controller.next_question()
    state = controller.session.ritual_state

    return QuestionResponse(
        phase_id=result.phase.id,
        phase_name=result.phase.name,
        phase_index=state.current_phase_index,
        question=result.question,
        is_ai_generated=result.is_ai_generated,
        failure_reason=result.failure_reason,
        skipped_reason=result.skipped_reason,
        ai_circuit_broken=controller.ai_circuit_broken,
    )


@router.post("/entries", response_model=DialogueEntryResponse)
async def add_entry(request: DialogueEntryRequest, controller: FlowControllerDep):
    """Record an answer. The answer is screened for crisis indicators first."""
    crisis = await controller.check_answer(request.answer, request.metrics)

    entry = await controller.add_dialogue_entry(
        phase_id=request.phase_id,
        phase_name=request.phase_name,
        question=request.question,
        answer=request.answer,
        is_ai_generated=request.is_ai_generated,
    )

    return DialogueEntryResponse(
        entry=entry.to_json_dict(),
        crisis=CrisisSchema(
            is_crisis=crisis.is_crisis,
            reason=crisis.reason,
            matched_keywords=crisis.matched_keywords,
            suggestion=crisis.suggestion,
            resources=CRISIS_RESOURCES if crisis.is_crisis else None,
        ),
        state=SessionStateResponse.from_controller(controller),
    )


@router.post("/pause", response_model=SessionStateResponse)
async def pause_ritual(controller: FlowControllerDep):
    await controller.pause_current_ritual()
    return SessionStateResponse.from_controller(controller)


@router.post("/resume", response_model=SessionStateResponse)
async def resume_ritual(controller: FlowControllerDep):
    await controller.resume_current_ritual()
    return SessionStateResponse.from_controller(controller)


@router.post("/circuit-breaker", response_model=SessionStateResponse)
async def trip_circuit_breaker(controller: FlowControllerDep):
    """Switch to static questions for the rest of the session."""
    await controller.trip_ai_circuit_breaker("manual")
    return SessionStateResponse.from_controller(controller)


@router.post("/metrics", response_model=MetricsResponse)
async def record_metrics(metrics: ACTMetrics, controller: FlowControllerDep):
    needs_break = await controller.update_ritual_metrics(metrics)
    return MetricsResponse(
        needs_somatic_break=needs_break,
        state=SessionStateResponse.from_controller(controller),
    )


@router.post("/somatic-break", response_model=SessionStateResponse)
async def somatic_break(
    controller: FlowControllerDep, request: Optional[SomaticBreakRequest] = None
):
    if request is not None and request.needed is not None:
        await controller.set_somatic_break_needed(request.needed)
    else:
        await controller.complete_somatic_break()
    return SessionStateResponse.from_controller(controller)


@router.post("/complete", response_model=SessionStateResponse)
async def complete_ritual(
    request: CompleteRequest,
    controller: FlowControllerDep,
    access_token: AccessTokenDep,
):
    """Finalize the ritual and record it in history."""
    guard = await controller.complete_ritual(
        request.final_intensity, request.summary_mode, access_token
    )
    if not guard:
        return guard_denied(controller, guard)
    return SessionStateResponse.from_controller(controller)


summary_router = APIRouter(tags=["ritual"])


@summary_router.get("/summary", response_model=SummaryResponse)
async def get_summary(
    controller: FlowControllerDep,
    final_intensity: float = Query(..., ge=0, le=10),
    mode: SummaryMode = Query(default=SummaryMode.TEXTUAL),
):
    """Closing summary. AI mode falls back to the textual summary on failure."""
    result = await controller.generate_summary(final_intensity, mode)
    return SummaryResponse(text=result.text, mode=result.mode, fell_back=result.fell_back)
