"""Domain types for the ACT ritual flow.

This module defines the canonical shape of a session and its nested
structures, along with field-level validation constraints. Validation is
all-or-nothing: ``Session.model_validate`` either returns a complete model or
raises ``pydantic.ValidationError``.

Core Models:
    - Session: Root aggregate for one user's journey (schema version 2)
    - RitualState: Sub-state of the 6-phase Socratic ritual
    - CompletedSession: Immutable history record written on completion

Serialization:
    JSON keeps the camelCase field names of the stored records
    (``schemaVersion``, ``actProfile``, ...). Python attributes are
    snake_case; both spellings are accepted on input. Dates are written as
    ISO strings and re-hydrated to timezone-aware datetimes on load.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


CURRENT_SCHEMA_VERSION = 2

RITUAL_PHASE_COUNT = 6
MAX_PHASE_INDEX = RITUAL_PHASE_COUNT - 1


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix kinds."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# Enumerations
# =============================================================================


class FlowStage(str, Enum):
    """Stages of the application flow."""

    IDLE = "IDLE"
    TEST = "TEST"
    DIAGNOSIS = "DIAGNOSIS"
    RITUAL = "RITUAL"
    COMPLETE = "COMPLETE"


class ProfileCategory(str, Enum):
    """ACT profile categories produced by the questionnaire."""

    A = "A"  # Cognitive
    B = "B"  # Emotional
    C = "C"  # Somatic
    D = "D"  # Narrative


class PrivacyMode(str, Enum):
    """Controls whether and how long a session is written to storage."""

    PERSIST = "persist"
    SESSION = "session"
    PRIVATE = "private"


class SummaryMode(str, Enum):
    TEXTUAL = "textual"
    AI = "ai"


# =============================================================================
# Base model
# =============================================================================


class CamelModel(BaseModel):
    """Base for stored records: camelCase JSON, snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_json_dict(self) -> Dict[str, Any]:
        """Dump to a JSON-compatible dict using stored (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Profile
# =============================================================================


class ProfileScores(CamelModel):
    """Per-category questionnaire totals (six Likert answers of 1-5 each)."""

    # Category letters are stored as-is, not camelCased
    model_config = ConfigDict(alias_generator=None)

    A: int = Field(ge=0, le=30)
    B: int = Field(ge=0, le=30)
    C: int = Field(ge=0, le=30)
    D: int = Field(ge=0, le=30)

    def get(self, category: ProfileCategory) -> int:
        return getattr(self, category.value)


class MixedProfile(CamelModel):
    name: str
    description: str
    emoji: str


class ProfileResult(CamelModel):
    """Result of the profiling questionnaire."""

    profile: ProfileCategory
    scores: ProfileScores
    secondary_profile: Optional[ProfileCategory] = None
    mixed_profile: Optional[MixedProfile] = None


# =============================================================================
# Diagnosis
# =============================================================================


class DiagnosisData(CamelModel):
    """Core belief and its emotional context captured by the diagnosis form."""

    core_belief: str = Field(min_length=5, description="Belief in the user's words")
    emotional_history: List[str] = Field(min_length=1)
    triggers: List[str] = Field(min_length=1)
    narrative: str = ""
    origin: str = ""
    intensity: int = Field(ge=1, le=10)
    subcategory: str = ""


def is_valid_diagnosis(diagnosis: Optional[DiagnosisData]) -> bool:
    """Minimum-validity check required before a ritual can start.

    Checked explicitly rather than trusting the model, since diagnoses built
    with ``model_construct`` skip field validation.
    """
    if diagnosis is None:
        return False

    return (
        len(diagnosis.core_belief) >= 5
        and len(diagnosis.emotional_history) > 0
        and len(diagnosis.triggers) > 0
        and 1 <= diagnosis.intensity <= 10
    )


# =============================================================================
# Dialogue and ritual
# =============================================================================


class DialogueEntry(CamelModel):
    """One question/answer exchange of the Socratic dialogue."""

    phase_id: str
    phase_name: str
    question: str
    answer: str
    timestamp: datetime
    is_ai_generated: bool = False


class ACTMetrics(CamelModel):
    """Snapshot of intensity and optional ACT sub-metrics (0-10 scale)."""

    intensity: float = Field(ge=0, le=10)
    cognitive_fusion: Optional[float] = Field(default=None, ge=0, le=10)
    avoidance_urgency: Optional[float] = Field(default=None, ge=0, le=10)


class RitualAnswer(CamelModel):
    phase_id: str
    question: str
    answer: str
    is_ai_generated: bool = False


class RitualState(CamelModel):
    """Progress through the fixed 6-phase ritual.

    Fields:
        - current_phase_index: Index of the next phase to answer, in [0, 5]
        - ai_circuit_breaker_tripped: One-way flag; once set, AI questions
          stay disabled for the rest of the session
        - metrics_history: Append-only intensity/fusion/avoidance snapshots
    """

    current_phase_index: int = Field(default=0, ge=0, le=MAX_PHASE_INDEX)
    answers: List[RitualAnswer] = Field(default_factory=list)
    is_paused: bool = False
    paused_at: Optional[datetime] = None
    is_ai_mode: bool = True
    ai_circuit_breaker_tripped: bool = False
    ai_retry_count: int = Field(default=0, ge=0)
    metrics_history: List[ACTMetrics] = Field(default_factory=list)
    somatic_breaks_taken: int = Field(default=0, ge=0)
    needs_somatic_break: bool = False


# =============================================================================
# Session
# =============================================================================


class Session(CamelModel):
    """Root aggregate for one user's therapeutic journey.

    Lifecycle:
        1. Created fresh when nothing is stored or the stored record expired
        2. Replaced (never mutated in place) by FlowController actions
        3. Finalized on ritual completion and projected into history
        4. Discarded by explicit reset or expiry on load
    """

    schema_version: int = CURRENT_SCHEMA_VERSION
    id: str = Field(min_length=1)
    act_profile: Optional[ProfileResult] = None
    diagnosis: Optional[DiagnosisData] = None
    dialogue: List[DialogueEntry] = Field(default_factory=list)
    ritual_state: Optional[RitualState] = None
    initial_metrics: Optional[ACTMetrics] = None
    final_metrics: Optional[ACTMetrics] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    privacy_mode: PrivacyMode = PrivacyMode.PERSIST
    tags: List[str] = Field(default_factory=list)


class CompletedSession(CamelModel):
    """Immutable summary of a finished ritual, kept in local history."""

    id: str
    created_at: datetime
    completed_at: datetime
    core_belief: str
    primary_emotion: str
    profile: ProfileCategory
    initial_intensity: float
    final_intensity: float
    tags: List[str] = Field(default_factory=list)
    phases_completed: int = 0
    used_ai: bool = False
    summary_mode: Optional[SummaryMode] = None


# =============================================================================
# Telemetry
# =============================================================================


class TelemetryEvent(str, Enum):
    TEST_STARTED = "test_started"
    TEST_COMPLETED = "test_completed"
    DIAGNOSIS_STARTED = "diagnosis_started"
    DIAGNOSIS_COMPLETED = "diagnosis_completed"
    RITUAL_STARTED = "ritual_started"
    RITUAL_PHASE_COMPLETED = "ritual_phase_completed"
    RITUAL_PAUSED = "ritual_paused"
    RITUAL_RESUMED = "ritual_resumed"
    RITUAL_COMPLETED = "ritual_completed"
    RITUAL_SAVED_EXIT = "ritual_saved_exit"
    RITUAL_DISCARDED_EXIT = "ritual_discarded_exit"
    AI_QUESTION_REQUESTED = "ai_question_requested"
    AI_QUESTION_SUCCESS = "ai_question_success"
    AI_FALLBACK_USED = "ai_fallback_used"
    AI_CIRCUIT_BREAKER_TRIPPED = "ai_circuit_breaker_tripped"
    SOMATIC_BREAK_TRIGGERED = "somatic_break_triggered"
    SOMATIC_BREAK_COMPLETED = "somatic_break_completed"
    CRISIS_DETECTED = "crisis_detected"
    CRISIS_MODAL_SHOWN = "crisis_modal_shown"
    SUMMARY_GENERATED = "summary_generated"
    EXPORT_DOWNLOADED = "export_downloaded"
    SESSION_EXPIRED = "session_expired"
    SESSION_DELETED = "session_deleted"
    PRIVACY_MODE_CHANGED = "privacy_mode_changed"
    TAG_ADDED = "tag_added"
    METRICS_RECORDED = "metrics_recorded"
    NEW_RITUAL_STARTED = "new_ritual_started"


class TelemetryPayload(CamelModel):
    event: TelemetryEvent
    timestamp: datetime
    session_id: str
    data: Optional[Dict[str, Any]] = None


# =============================================================================
# Crisis detection constants
# =============================================================================


CRISIS_KEYWORDS = (
    "suicidio",
    "suicidar",
    "matarme",
    "morir",
    "muerte",
    "hacerme daño",
    "autolesion",
    "autolesión",
    "cortarme",
    "no quiero vivir",
    "acabar con todo",
    "desaparecer",
    "matar",
    "hacer daño a",
    "violencia",
    "suicide",
    "kill myself",
    "hurt myself",
    "self-harm",
    "end it all",
    "don't want to live",
)
CRISIS_INTENSITY_THRESHOLD = 9
CRISIS_SUSTAINED_HIGH_THRESHOLD = 8
CRISIS_SUSTAINED_COUNT = 3
