"""Pure domain layer: schema, flow guard, persistence rules and ritual content."""

from serenis.domain.flow import (
    FlowGuardResult,
    can_transition_to,
    get_available_transitions,
    get_current_stage,
    get_progress_percentage,
    has_significant_progress,
)
from serenis.domain.types import (
    CURRENT_SCHEMA_VERSION,
    ACTMetrics,
    CompletedSession,
    DiagnosisData,
    DialogueEntry,
    FlowStage,
    PrivacyMode,
    ProfileCategory,
    ProfileResult,
    RitualState,
    Session,
)

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "ACTMetrics",
    "CompletedSession",
    "DiagnosisData",
    "DialogueEntry",
    "FlowGuardResult",
    "FlowStage",
    "PrivacyMode",
    "ProfileCategory",
    "ProfileResult",
    "RitualState",
    "Session",
    "can_transition_to",
    "get_available_transitions",
    "get_current_stage",
    "get_progress_percentage",
    "has_significant_progress",
]
