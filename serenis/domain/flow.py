"""Flow guard: stage transition rules for the ritual flow.

Pure, side-effect-free functions. Callers must check ``can_transition_to``
before moving to a stage and surface the suggestion when it is denied; a
denial is an expected branch, not an error.

Transition rules:
    - IDLE, TEST: always allowed
    - DIAGNOSIS: needs an ACT profile
    - RITUAL: needs a profile and a diagnosis passing is_valid_diagnosis
    - COMPLETE: needs a profile and a diagnosis

Derived state (current stage, available transitions, progress) is always
recomputed from the session rather than stored alongside it.
"""

from dataclasses import dataclass
from typing import List, Optional, Union

from serenis.domain.types import FlowStage, Session, is_valid_diagnosis


PROFILE_REQUIRED = "profile_required"
DIAGNOSIS_REQUIRED = "diagnosis_required"
SESSION_INCOMPLETE = "session_incomplete"
UNKNOWN_STAGE = "unknown_stage"

# Phase count used to scale dialogue progress
PROGRESS_PHASES = 6


@dataclass(frozen=True)
class FlowGuardResult:
    """Outcome of a transition check.

    ``suggestion`` is user-facing text only; program logic keys off
    ``reason``.
    """

    allowed: bool
    reason: Optional[str] = None
    suggestion: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "suggestion": self.suggestion,
        }


ALLOWED = FlowGuardResult(allowed=True)


def can_transition_to(target: Union[FlowStage, str], session: Session) -> FlowGuardResult:
    """Check whether the session may move to ``target``."""
    try:
        target = FlowStage(target)
    except ValueError:
        return FlowGuardResult(allowed=False, reason=UNKNOWN_STAGE)

    if target in (FlowStage.IDLE, FlowStage.TEST):
        return ALLOWED

    if target == FlowStage.DIAGNOSIS:
        if session.act_profile is None:
            return FlowGuardResult(
                allowed=False,
                reason=PROFILE_REQUIRED,
                suggestion="Complete the ACT Profile Test first to unlock the diagnosis.",
            )
        return ALLOWED

    if target == FlowStage.RITUAL:
        if session.act_profile is None:
            return FlowGuardResult(
                allowed=False,
                reason=PROFILE_REQUIRED,
                suggestion="Complete the ACT Profile Test first.",
            )
        if not is_valid_diagnosis(session.diagnosis):
            return FlowGuardResult(
                allowed=False,
                reason=DIAGNOSIS_REQUIRED,
                suggestion="Complete the diagnosis with a valid core belief first.",
            )
        return ALLOWED

    # COMPLETE
    if session.act_profile is None or session.diagnosis is None:
        return FlowGuardResult(
            allowed=False,
            reason=SESSION_INCOMPLETE,
            suggestion="There is no complete session to show yet.",
        )
    return ALLOWED


def get_current_stage(session: Session) -> FlowStage:
    """Infer the effective stage from session contents.

    A ritual still at phase index 0 has not produced any answer yet and is
    reported as DIAGNOSIS.
    """
    if session.completed_at is not None:
        return FlowStage.COMPLETE

    if session.ritual_state is not None and session.ritual_state.current_phase_index > 0:
        return FlowStage.RITUAL

    if session.diagnosis is not None:
        return FlowStage.DIAGNOSIS

    if session.act_profile is not None:
        return FlowStage.TEST

    return FlowStage.IDLE


def get_available_transitions(session: Session) -> List[FlowStage]:
    """Stages currently reachable, for enabling/disabling navigation."""
    available = [FlowStage.IDLE, FlowStage.TEST]

    if session.act_profile is not None:
        available.append(FlowStage.DIAGNOSIS)

    if session.act_profile is not None and is_valid_diagnosis(session.diagnosis):
        available.append(FlowStage.RITUAL)

    if session.completed_at is not None:
        available.append(FlowStage.COMPLETE)

    return available


def has_significant_progress(session: Session) -> bool:
    """Whether discarding the session warrants a confirmation."""
    return (
        session.act_profile is not None
        or (session.diagnosis is not None and len(session.diagnosis.core_belief) > 0)
        or len(session.dialogue) > 0
    )


def get_progress_percentage(session: Session) -> int:
    """Weighted progress: profile 25, diagnosis 25, dialogue up to 40.

    A completed session always reports 100.
    """
    if session.completed_at is not None:
        return 100

    progress = 0.0
    if session.act_profile is not None:
        progress += 25
    if session.diagnosis is not None:
        progress += 25
    if session.dialogue:
        progress += min(40.0, len(session.dialogue) / PROGRESS_PHASES * 40)

    return round(progress)
