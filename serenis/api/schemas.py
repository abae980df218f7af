"""
API request/response schemas.

Pydantic models for API validation and serialization. Domain models are
returned in their camelCase storage shape; envelope fields stay snake_case.
"""

from typing import Any, Dict, List, Optional

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator, model_validator

from serenis.domain.flow import FlowGuardResult
from serenis.domain.types import (
    ACTMetrics,
    FlowStage,
    PrivacyMode,
    ProfileResult,
    SummaryMode,
)
from serenis.services.flow_controller import FlowController


# ============ SESSION SCHEMAS ============


class NoticeSchema(BaseModel):
    level: str
    message: str
    description: Optional[str] = None


class SessionStateResponse(BaseModel):
    """Current session plus everything derived from it."""

    session: Dict[str, Any]
    current_stage: FlowStage
    available_transitions: List[FlowStage]
    progress_percent: int
    has_profile: bool
    has_diagnosis: bool
    has_progress: bool
    can_start_ritual: bool
    is_ritual_paused: bool
    is_ai_mode: bool
    ai_circuit_broken: bool
    notices: List[NoticeSchema] = Field(default_factory=list)

    @classmethod
    def from_controller(cls, controller: FlowController) -> "SessionStateResponse":
        return cls(
            session=controller.session.to_json_dict(),
            current_stage=controller.current_stage,
            available_transitions=controller.available_transitions,
            progress_percent=controller.progress_percent,
            has_profile=controller.has_profile,
            has_diagnosis=controller.has_diagnosis,
            has_progress=controller.has_progress,
            can_start_ritual=controller.can_start_ritual,
            is_ritual_paused=controller.is_ritual_paused,
            is_ai_mode=controller.is_ai_mode,
            ai_circuit_broken=controller.ai_circuit_broken,
            notices=[NoticeSchema(**n.to_dict()) for n in controller.drain_notices()],
        )


class GuardDeniedResponse(BaseModel):
    """Body of a 409 returned when a stage transition is not allowed."""

    allowed: bool = False
    reason: Optional[str] = None
    suggestion: Optional[str] = None
    notices: List[NoticeSchema] = Field(default_factory=list)


class StageRequest(BaseModel):
    # Plain string so unknown stages reach the guard instead of failing validation
    stage: str = Field(..., min_length=1)

    @field_validator("stage")
    @classmethod
    def stage_upper(cls, v: str) -> str:
        return v.strip().upper()


class ResetRequest(BaseModel):
    privacy_mode: PrivacyMode = PrivacyMode.PERSIST


class PrivacyRequest(BaseModel):
    mode: PrivacyMode


class TagRequest(BaseModel):
    tag: str = Field(..., min_length=1, max_length=50)


class ProfileRequest(BaseModel):
    """Either raw questionnaire answers (question id -> 1..5) or a ready result."""

    answers: Optional[Dict[int, int]] = None
    result: Optional[ProfileResult] = None

    @model_validator(mode="after")
    def exactly_one_source(self) -> "ProfileRequest":
        if (self.answers is None) == (self.result is None):
            raise ValueError("Provide exactly one of 'answers' or 'result'")
        return self


# ============ RITUAL SCHEMAS ============


class QuestionResponse(BaseModel):
    phase_id: str
    phase_name: str
    phase_index: int
    question: str
    is_ai_generated: bool
    failure_reason: Optional[str] = None
    skipped_reason: Optional[str] = None
    ai_circuit_broken: bool


class DialogueEntryRequest(BaseModel):
    phase_id: str = Field(..., min_length=1)
    phase_name: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1, max_length=5000)
    is_ai_generated: bool = False
    metrics: Optional[ACTMetrics] = None


class CrisisSchema(BaseModel):
    is_crisis: bool
    reason: Optional[str] = None
    matched_keywords: List[str] = Field(default_factory=list)
    suggestion: Optional[str] = None
    resources: Optional[Dict[str, Dict[str, str]]] = None


class DialogueEntryResponse(BaseModel):
    entry: Dict[str, Any]
    crisis: CrisisSchema
    state: SessionStateResponse


class MetricsResponse(BaseModel):
    needs_somatic_break: bool
    state: SessionStateResponse


class SomaticBreakRequest(BaseModel):
    """``needed`` set: flag or clear a pending break. Absent: mark one completed."""

    needed: Optional[bool] = None


class CompleteRequest(BaseModel):
    final_intensity: float = Field(..., ge=0, le=10)
    summary_mode: Optional[SummaryMode] = None


class SummaryResponse(BaseModel):
    text: str
    mode: SummaryMode
    fell_back: bool


# ============ HISTORY SCHEMAS ============


class HistoryResponse(BaseModel):
    entries: List[Dict[str, Any]]
    total: int


class SyncResponse(BaseModel):
    success: bool
    synced: int
    error: Optional[str] = None
    history: HistoryResponse


def guard_denied(controller: FlowController, guard: FlowGuardResult) -> JSONResponse:
    """409 response for a transition the flow guard refused."""
    body = GuardDeniedResponse(
        reason=guard.reason,
        suggestion=guard.suggestion,
        notices=[NoticeSchema(**n.to_dict()) for n in controller.drain_notices()],
    )
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=body.model_dump())
