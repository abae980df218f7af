"""Question generation for the Socratic ritual.

Every phase has a deterministic static question; the LLM is only an
enhancement. ``generate_question`` never raises: provider failures come back
as a static question plus a ``failure_reason`` the FlowController feeds into
the circuit breaker.

AI questions are skipped (static question returned, no failure) when:
- AI mode is off or the circuit breaker has tripped
- the ritual is on its last phase
- the ritual is paused
- no LLM client is configured
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import structlog

from serenis.core.exceptions import (
    LLMError,
    LLMQuotaExhaustedError,
    LLMRateLimitError,
    LLMTimeoutError,
    SessionIncompleteError,
)
from serenis.domain.ritual import RitualPhase, get_phase, is_last_phase
from serenis.domain.types import RitualState, Session
from serenis.llm.client import QUESTION_MAX_TOKENS, LLMClient
from serenis.llm.prompts import (
    clean_question,
    get_question_system_prompt,
    get_question_user_prompt,
    profile_name,
)

log = structlog.get_logger(__name__)


FAILURE_RATE_LIMIT = "rate_limit"
FAILURE_QUOTA = "quota"
FAILURE_TIMEOUT = "timeout"
FAILURE_ERROR = "error"

# Failures after which retrying within the session is pointless
TRIPPING_FAILURES = frozenset({FAILURE_RATE_LIMIT, FAILURE_QUOTA})


@dataclass(frozen=True)
class QuestionResult:
    """Question to show for the current phase."""

    phase: RitualPhase
    question: str
    is_ai_generated: bool = False
    failure_reason: Optional[str] = None
    skipped_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phaseId": self.phase.id,
            "phaseName": self.phase.name,
            "question": self.question,
            "isAiGenerated": self.is_ai_generated,
            "failureReason": self.failure_reason,
            "skippedReason": self.skipped_reason,
        }


def build_question_request(session: Session, state: RitualState) -> Dict[str, Any]:
    """Structured request for the question provider.

    Raises:
        SessionIncompleteError: If the session has no profile or diagnosis
    """
    if session.act_profile is None or session.diagnosis is None:
        raise SessionIncompleteError("Question generation needs a profile and diagnosis")

    phase = get_phase(state.current_phase_index)
    diagnosis = session.diagnosis

    return {
        "phaseId": phase.id,
        "phaseName": phase.name,
        "phaseInstruction": phase.instruction,
        "coreBelief": diagnosis.core_belief,
        "profile": session.act_profile.profile.value,
        "profileName": profile_name(session.act_profile.profile),
        "emotions": list(diagnosis.emotional_history),
        "triggers": list(diagnosis.triggers),
        "origin": diagnosis.origin,
        "intensity": diagnosis.intensity,
        "previousAnswers": [
            {"phaseId": a.phase_id, "question": a.question, "answer": a.answer}
            for a in state.answers
        ],
    }


class QuestionService:
    """Generates the question for the ritual's current phase."""

    def __init__(self, llm_client: Optional[LLMClient] = None):
        self.llm = llm_client

        log.info("question_service_initialized", ai_available=llm_client is not None)

    def _skip_reason(self, state: RitualState) -> Optional[str]:
        if self.llm is None:
            return "ai_unavailable"
        if state.ai_circuit_breaker_tripped:
            return "circuit_breaker"
        if not state.is_ai_mode:
            return "ai_mode_off"
        if state.is_paused:
            return "paused"
        if is_last_phase(state.current_phase_index):
            return "last_phase"
        return None

    async def generate_question(self, session: Session, state: RitualState) -> QuestionResult:
        """Question for ``state.current_phase_index``, AI-generated when possible.

        Raises:
            SessionIncompleteError: If the session has no profile or diagnosis
        """
        request = build_question_request(session, state)
        phase = get_phase(state.current_phase_index)
        static_question = phase.static_question(request["coreBelief"])

        skipped = self._skip_reason(state)
        if skipped is not None:
            return QuestionResult(phase=phase, question=static_question, skipped_reason=skipped)

        log.info("generating_question", phase=phase.id, session_id=session.id)

        try:
            response = await self.llm.complete(
                prompt=get_question_user_prompt(request),
                system=get_question_system_prompt(request),
                max_tokens=QUESTION_MAX_TOKENS,
            )
        except LLMRateLimitError:
            return self._fallback(phase, static_question, FAILURE_RATE_LIMIT)
        except LLMQuotaExhaustedError:
            return self._fallback(phase, static_question, FAILURE_QUOTA)
        except LLMTimeoutError:
            return self._fallback(phase, static_question, FAILURE_TIMEOUT)
        except (LLMError, httpx.HTTPError) as e:
            log.warning("question_generation_failed", phase=phase.id, error=str(e))
            return self._fallback(phase, static_question, FAILURE_ERROR)

        question = clean_question(response.content)
        if not question:
            # Provider answered but produced nothing usable
            log.warning("question_generation_empty", phase=phase.id)
            return QuestionResult(
                phase=phase, question=static_question, skipped_reason="empty_response"
            )

        return QuestionResult(phase=phase, question=question, is_ai_generated=True)

    def _fallback(self, phase: RitualPhase, static_question: str, reason: str) -> QuestionResult:
        log.warning("question_fallback_used", phase=phase.id, reason=reason)
        return QuestionResult(phase=phase, question=static_question, failure_reason=reason)
