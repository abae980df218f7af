"""
Flow controller: the single owner of the in-memory session.

Every mutating action follows the same order:
    1. Check the flow guard (where the action has one)
    2. Emit exactly one telemetry event
    3. Build the replacement Session (sessions are immutable)
    4. ``_commit`` it, which swaps the in-memory session and persists it

``_commit`` is the only place that writes the session, so no action can
forget to save. Private sessions pass through it too; ``save_session`` skips
the write for them.

User feedback is queued as ``Notice`` entries and drained by the API layer.
Denied transitions are not errors: actions return the falsy FlowGuardResult
and queue an error notice with the guard's suggestion.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

import structlog

from serenis.core.config import ritual_config
from serenis.core.exceptions import RitualNotStartedError
from serenis.domain import session as session_ops
from serenis.domain.crisis import CrisisCheckResult, detect_crisis, should_trigger_somatic_break
from serenis.domain.flow import (
    ALLOWED,
    FlowGuardResult,
    can_transition_to,
    get_available_transitions,
    get_current_stage,
    get_progress_percentage,
    has_significant_progress,
)
from serenis.domain.telemetry import TelemetryService
from serenis.domain.types import (
    ACTMetrics,
    CompletedSession,
    DiagnosisData,
    DialogueEntry,
    FlowStage,
    PrivacyMode,
    ProfileResult,
    RitualState,
    Session,
    SummaryMode,
    TelemetryEvent,
    utcnow,
)
from serenis.persistence.kv_store import KeyValueStore
from serenis.services.question_service import (
    TRIPPING_FAILURES,
    QuestionResult,
    QuestionService,
)
from serenis.services.summary_service import SummaryResult, SummaryService
from serenis.services.sync_service import SyncResult, SyncService

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Notice:
    """User-facing feedback produced by an action."""

    level: str  # success | info | warning | error
    message: str
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"level": self.level, "message": self.message, "description": self.description}


class FlowController:
    """Orchestrates stage navigation, ritual progress and history."""

    def __init__(
        self,
        store: KeyValueStore,
        telemetry: TelemetryService,
        question_service: Optional[QuestionService] = None,
        summary_service: Optional[SummaryService] = None,
        sync_service: Optional[SyncService] = None,
        max_retries_per_phase: int = ritual_config.ai.max_retries_per_phase,
    ):
        self.store = store
        self.telemetry = telemetry
        self.question_service = question_service or QuestionService()
        self.summary_service = summary_service or SummaryService()
        self.sync_service = sync_service
        self.max_retries_per_phase = max_retries_per_phase

        self.session: Session = session_ops.create_new_session()
        self.current_stage: FlowStage = FlowStage.IDLE
        self.history: List[CompletedSession] = []
        self._notices: List[Notice] = []
        # Serializes request handlers; actions interleave at every await
        self.lock = asyncio.Lock()

    @classmethod
    async def create(
        cls,
        store: KeyValueStore,
        telemetry: Optional[TelemetryService] = None,
        **kwargs: Any,
    ) -> "FlowController":
        """Build a controller and load persisted state."""
        if telemetry is None:
            telemetry = TelemetryService(store)
        await telemetry.load()

        controller = cls(store, telemetry, **kwargs)
        await controller.load()
        return controller

    async def load(self) -> None:
        """Restore the stored session (or start a fresh one) and history."""
        stored = await session_ops.load_session(self.store)
        if stored is None:
            await self._commit(session_ops.create_new_session())
        else:
            # Rewrites migrated records at the current schema version
            await self._commit(stored)

        self.current_stage = get_current_stage(self.session)
        self.history = await session_ops.load_history(self.store)

        log.info(
            "flow_controller_loaded",
            session_id=self.session.id,
            stage=self.current_stage.value,
            restored=stored is not None,
            history_size=len(self.history),
        )

    async def shutdown(self) -> None:
        """Drop records whose lifetime is bound to this process."""
        if self.session.privacy_mode == PrivacyMode.SESSION:
            await session_ops.delete_session(self.store)
            log.info("session_mode_record_deleted", session_id=self.session.id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _commit(self, new_session: Session) -> None:
        self.session = new_session
        await session_ops.save_session(self.store, new_session)

    async def _track(self, event: TelemetryEvent, data: Optional[Dict[str, Any]] = None) -> None:
        await self.telemetry.track(event, self.session.id, data)

    def _notify(self, level: str, message: str, description: Optional[str] = None) -> None:
        self._notices.append(Notice(level=level, message=message, description=description))

    def _deny(self, guard: FlowGuardResult, fallback: str) -> FlowGuardResult:
        self._notify("error", guard.suggestion or fallback)
        log.info("transition_denied", session_id=self.session.id, reason=guard.reason)
        return guard

    def drain_notices(self) -> List[Notice]:
        notices, self._notices = self._notices, []
        return notices

    # ------------------------------------------------------------------
    # Computed state
    # ------------------------------------------------------------------

    @property
    def has_profile(self) -> bool:
        return self.session.act_profile is not None

    @property
    def has_diagnosis(self) -> bool:
        return self.session.diagnosis is not None

    @property
    def has_progress(self) -> bool:
        return has_significant_progress(self.session)

    @property
    def progress_percent(self) -> int:
        return get_progress_percentage(self.session)

    @property
    def can_start_ritual(self) -> bool:
        return self.has_profile and self.has_diagnosis

    @property
    def is_ritual_paused(self) -> bool:
        state = self.session.ritual_state
        return state.is_paused if state is not None else False

    @property
    def is_ai_mode(self) -> bool:
        state = self.session.ritual_state
        return state.is_ai_mode if state is not None else True

    @property
    def ai_circuit_broken(self) -> bool:
        state = self.session.ritual_state
        return state.ai_circuit_breaker_tripped if state is not None else False

    @property
    def available_transitions(self) -> List[FlowStage]:
        return get_available_transitions(self.session)

    # ------------------------------------------------------------------
    # Stage navigation
    # ------------------------------------------------------------------

    def go_to_stage(self, target: FlowStage) -> FlowGuardResult:
        guard = can_transition_to(target, self.session)
        if not guard:
            return self._deny(guard, "You cannot open this stage yet.")

        self.current_stage = FlowStage(target)
        return guard

    # ------------------------------------------------------------------
    # Profile and diagnosis
    # ------------------------------------------------------------------

    async def set_act_profile(self, profile: ProfileResult) -> None:
        await self._track(TelemetryEvent.TEST_COMPLETED, {"profile": profile.profile.value})
        await self._commit(self.session.model_copy(update={"act_profile": profile}))

        self._notify("success", "ACT profile identified")
        self.current_stage = FlowStage.IDLE

    async def set_diagnosis(self, diagnosis: DiagnosisData) -> None:
        await self._track(
            TelemetryEvent.DIAGNOSIS_COMPLETED,
            {
                "intensity": diagnosis.intensity,
                "emotionCount": len(diagnosis.emotional_history),
            },
        )
        await self._commit(
            self.session.model_copy(
                update={
                    "diagnosis": diagnosis,
                    "initial_metrics": ACTMetrics(intensity=diagnosis.intensity),
                }
            )
        )

        self._notify("success", "Diagnosis completed")
        self.current_stage = FlowStage.IDLE

    # ------------------------------------------------------------------
    # Ritual
    # ------------------------------------------------------------------

    def _require_ritual(self) -> RitualState:
        if self.session.ritual_state is None:
            raise RitualNotStartedError("The ritual has not been started")
        return self.session.ritual_state

    async def _update_ritual_state(self, state: RitualState) -> None:
        await self._commit(self.session.model_copy(update={"ritual_state": state}))

    async def start_ritual(self) -> FlowGuardResult:
        """Enter the ritual, resuming an existing ritual state if there is one."""
        guard = can_transition_to(FlowStage.RITUAL, self.session)
        if not guard:
            return self._deny(guard, "Complete the previous steps first.")

        await self._track(TelemetryEvent.RITUAL_STARTED)
        await self._update_ritual_state(
            self.session.ritual_state or session_ops.create_ritual_state()
        )

        self.current_stage = FlowStage.RITUAL
        return guard

    async def add_dialogue_entry(
        self,
        phase_id: str,
        phase_name: str,
        question: str,
        answer: str,
        is_ai_generated: bool = False,
    ) -> DialogueEntry:
        """Append an exchange and advance the ritual phase when a ritual exists."""
        entry = DialogueEntry(
            phase_id=phase_id,
            phase_name=phase_name,
            question=question,
            answer=answer,
            timestamp=utcnow(),
            is_ai_generated=is_ai_generated,
        )

        await self._track(
            TelemetryEvent.RITUAL_PHASE_COMPLETED,
            {"phaseId": phase_id, "isAiGenerated": is_ai_generated},
        )

        update: Dict[str, Any] = {"dialogue": [*self.session.dialogue, entry]}
        if self.session.ritual_state is not None:
            update["ritual_state"] = session_ops.update_ritual_phase(
                self.session.ritual_state, phase_id, question, answer, is_ai_generated
            )
        await self._commit(self.session.model_copy(update=update))
        return entry

    async def pause_current_ritual(self) -> None:
        await self._track(TelemetryEvent.RITUAL_PAUSED)

        state = self.session.ritual_state
        if state is not None:
            await self._update_ritual_state(session_ops.pause_ritual(state))

        self.current_stage = FlowStage.IDLE
        self._notify("info", "Ritual paused. Your progress is saved.")

    async def resume_current_ritual(self) -> bool:
        state = self.session.ritual_state
        if state is None:
            self._notify("error", "There is no ritual to resume")
            return False

        await self._track(TelemetryEvent.RITUAL_RESUMED)
        await self._update_ritual_state(session_ops.resume_ritual(state))

        self.current_stage = FlowStage.RITUAL
        return True

    async def trip_ai_circuit_breaker(self, reason: Optional[str] = None) -> None:
        """Switch the rest of this session to static questions."""
        await self._track(
            TelemetryEvent.AI_CIRCUIT_BREAKER_TRIPPED,
            {"reason": reason} if reason else None,
        )

        state = self.session.ritual_state
        if state is not None:
            await self._update_ritual_state(session_ops.trip_circuit_breaker(state))

        self._notify(
            "info",
            "Switching to standard questions",
            "We will continue with high-quality predefined questions.",
        )

    async def update_ritual_metrics(self, metrics: ACTMetrics) -> bool:
        """Record a metrics snapshot. Returns whether a somatic break is now needed."""
        state = self.session.ritual_state
        if state is None:
            return False

        if state.metrics_history:
            previous = state.metrics_history[-1].intensity
        elif self.session.initial_metrics is not None:
            previous = self.session.initial_metrics.intensity
        else:
            previous = metrics.intensity

        needs_break = should_trigger_somatic_break(
            previous, metrics.intensity, state.somatic_breaks_taken
        )

        if needs_break:
            await self._track(
                TelemetryEvent.SOMATIC_BREAK_TRIGGERED,
                {"previousIntensity": previous, "intensity": metrics.intensity},
            )
        else:
            await self._track(TelemetryEvent.METRICS_RECORDED, {"intensity": metrics.intensity})

        state = session_ops.add_metrics_to_history(state, metrics)
        if needs_break:
            state = session_ops.set_somatic_break_needed(state, True)
        await self._update_ritual_state(state)
        return needs_break

    async def set_somatic_break_needed(self, needed: bool) -> None:
        state = self.session.ritual_state
        if state is None:
            return

        await self._track(TelemetryEvent.SOMATIC_BREAK_TRIGGERED, {"needed": needed})
        await self._update_ritual_state(session_ops.set_somatic_break_needed(state, needed))

    async def complete_somatic_break(self) -> None:
        await self._track(TelemetryEvent.SOMATIC_BREAK_COMPLETED)

        state = self.session.ritual_state
        if state is not None:
            await self._update_ritual_state(session_ops.complete_somatic_break(state))

    async def next_question(self) -> QuestionResult:
        """Question for the current phase, with circuit-breaker bookkeeping.

        Raises:
            RitualNotStartedError: If no ritual is in progress
            SessionIncompleteError: If the session has no profile or diagnosis
        """
        state = self._require_ritual()
        result = await self.question_service.generate_question(self.session, state)

        if result.is_ai_generated:
            await self._track(TelemetryEvent.AI_QUESTION_SUCCESS, {"phaseId": result.phase.id})
            await self._update_ritual_state(session_ops.reset_ai_retries(state))
            return result

        if result.failure_reason is None:
            return result

        retries = state.ai_retry_count + 1
        if result.failure_reason in TRIPPING_FAILURES or retries >= self.max_retries_per_phase:
            log.warning(
                "ai_circuit_breaker_tripped",
                session_id=self.session.id,
                reason=result.failure_reason,
                retries=retries,
            )
            await self.trip_ai_circuit_breaker(result.failure_reason)
            return result

        await self._track(
            TelemetryEvent.AI_FALLBACK_USED,
            {"phaseId": result.phase.id, "reason": result.failure_reason, "retries": retries},
        )
        await self._update_ritual_state(session_ops.record_ai_failure(state))
        return result

    async def check_answer(self, text: str, metrics: Optional[ACTMetrics] = None) -> CrisisCheckResult:
        """Screen an answer for crisis indicators before it is recorded."""
        history = self.session.ritual_state.metrics_history if self.session.ritual_state else []
        result = detect_crisis(text, metrics, history)

        if result.is_crisis:
            await self._track(TelemetryEvent.CRISIS_DETECTED, {"reason": result.reason})
            log.warning("crisis_detected", session_id=self.session.id, reason=result.reason)
        return result

    # ------------------------------------------------------------------
    # Completion and summary
    # ------------------------------------------------------------------

    async def complete_ritual(
        self,
        final_intensity: float,
        summary_mode: Optional[SummaryMode] = None,
        access_token: Optional[str] = None,
    ) -> FlowGuardResult:
        """Finalize the session, record it in history and sync it when possible."""
        guard = can_transition_to(FlowStage.COMPLETE, self.session)
        if not guard:
            return self._deny(guard, "There is no complete session yet.")

        await self._track(
            TelemetryEvent.RITUAL_COMPLETED,
            {
                "initialIntensity": self.session.diagnosis.intensity,
                "finalIntensity": final_intensity,
                "phasesCompleted": len(self.session.dialogue),
            },
        )

        private = self.session.privacy_mode == PrivacyMode.PRIVATE
        if not private:
            await session_ops.save_to_history(
                self.store, self.session, final_intensity, summary_mode
            )
            self.history = await session_ops.load_history(self.store)

        finished = self.session.model_copy(
            update={
                "final_metrics": ACTMetrics(intensity=final_intensity),
                "completed_at": utcnow(),
            }
        )
        await self._commit(finished)
        self.current_stage = FlowStage.COMPLETE

        if self.sync_service is not None and not private:
            result = await self.sync_service.sync_session_to_cloud(
                finished, final_intensity, access_token
            )
            if not result.success:
                log.warning("ritual_sync_skipped", session_id=finished.id, error=result.error)

        return ALLOWED

    async def generate_summary(
        self, final_intensity: float, mode: SummaryMode = SummaryMode.TEXTUAL
    ) -> SummaryResult:
        """
        Raises:
            SessionIncompleteError: If the session has no profile or diagnosis
        """
        result = await self.summary_service.generate(self.session, final_intensity, mode)
        await self._track(
            TelemetryEvent.SUMMARY_GENERATED,
            {"mode": result.mode.value, "fellBack": result.fell_back},
        )
        return result

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    async def reset_session(self, privacy_mode: PrivacyMode = PrivacyMode.PERSIST) -> None:
        await self._track(TelemetryEvent.SESSION_DELETED)

        await session_ops.delete_session(self.store)
        await self._commit(session_ops.create_new_session(privacy_mode))
        self.current_stage = FlowStage.IDLE

        self._notify("success", "Session reset")

    async def start_new_ritual(self) -> None:
        """Keep the profile and clear everything tied to the previous ritual."""
        await self._track(TelemetryEvent.NEW_RITUAL_STARTED)
        await self._commit(
            self.session.model_copy(
                update={
                    "diagnosis": None,
                    "dialogue": [],
                    "ritual_state": None,
                    "initial_metrics": None,
                    "final_metrics": None,
                    "completed_at": None,
                }
            )
        )
        self.current_stage = FlowStage.IDLE

    async def set_privacy_mode(self, mode: PrivacyMode) -> None:
        mode = PrivacyMode(mode)
        await self._track(
            TelemetryEvent.PRIVACY_MODE_CHANGED,
            {"from": self.session.privacy_mode.value, "to": mode.value},
        )

        update: Dict[str, Any] = {"privacy_mode": mode}
        if mode == PrivacyMode.SESSION:
            update["expires_at"] = None
        elif mode == PrivacyMode.PERSIST and self.session.expires_at is None:
            update["expires_at"] = utcnow() + timedelta(days=session_ops.EXPIRY_DAYS)

        if mode == PrivacyMode.PRIVATE:
            # Whatever is on disk must go before the private session exists
            await session_ops.delete_session(self.store)
            self._notify("info", "Private mode enabled", "Nothing will be saved.")

        await self._commit(self.session.model_copy(update=update))

    async def add_tag(self, tag: str) -> None:
        tag = tag.strip()
        if not tag:
            return

        tags = self.session.tags if tag in self.session.tags else [*self.session.tags, tag]
        # Tag text is user content; only the count is tracked
        await self._track(TelemetryEvent.TAG_ADDED, {"tagCount": len(tags)})
        if tags is not self.session.tags:
            await self._commit(self.session.model_copy(update={"tags": tags}))

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def delete_history_entry(
        self, session_id: str, access_token: Optional[str] = None
    ) -> bool:
        removed = await session_ops.delete_from_history(self.store, session_id)
        self.history = await session_ops.load_history(self.store)

        if self.sync_service is not None:
            await self.sync_service.delete_cloud_session(session_id, access_token)

        if removed:
            self._notify("success", "Entry removed from history")
        return removed

    def search_in_history(self, query: str) -> List[CompletedSession]:
        return session_ops.search_history(query, self.history)

    async def sync_history(self, access_token: Optional[str] = None) -> SyncResult:
        """Upload missing local entries, then merge cloud history into view."""
        if self.sync_service is None:
            return SyncResult(success=True, synced=0)

        local = await session_ops.load_history(self.store)
        result = await self.sync_service.sync_all_local_to_cloud(local, access_token)
        cloud = await self.sync_service.load_cloud_history(access_token)
        self.history = session_ops.merge_histories(local, cloud)
        return result
