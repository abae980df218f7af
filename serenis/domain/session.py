"""Session persistence, schema migration, ritual sub-state and history.

Storage keys (one JSON document each):
    - via_serenis_session: the single active Session
    - via_serenis_history: list of CompletedSession, newest first

Failure semantics:
    Storage and parse errors never propagate out of this module. A record
    that cannot be parsed, migrated or validated is treated as corrupted: it
    is deleted and the caller gets ``None``. An elapsed ``expiresAt`` is a
    normal lifecycle event handled the same way. Write failures are logged
    and the in-memory session stays authoritative.

Schema migrations:
    MIGRATIONS maps a source schema version to a pure ``dict -> dict`` step
    producing the next version. Steps are applied in order until the record
    reaches CURRENT_SCHEMA_VERSION, then the result is validated.
"""

import json
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog

from serenis.core.config import ritual_config
from serenis.domain.types import (
    CURRENT_SCHEMA_VERSION,
    MAX_PHASE_INDEX,
    ACTMetrics,
    CompletedSession,
    PrivacyMode,
    RitualAnswer,
    RitualState,
    Session,
    SummaryMode,
    as_aware,
    utcnow,
)
from serenis.persistence.kv_store import KeyValueStore

log = structlog.get_logger(__name__)

STORAGE_KEY = "via_serenis_session"
HISTORY_KEY = "via_serenis_history"
EXPIRY_DAYS = ritual_config.session.expiry_days
HISTORY_LIMIT = ritual_config.session.history_limit


def _expiry_from(now: datetime) -> datetime:
    return now + timedelta(days=EXPIRY_DAYS)


# =============================================================================
# Schema migrations
# =============================================================================


Migration = Callable[[Dict[str, Any], datetime], Dict[str, Any]]


def migrate_v1_to_v2(legacy: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """Upgrade a pre-versioned record.

    Version 1 records have no ritual state, privacy mode, metrics, tags or
    AI flags on dialogue entries.
    """
    diagnosis = legacy.get("diagnosis")
    initial_metrics = None
    if diagnosis:
        initial_metrics = {"intensity": diagnosis["intensity"]}

    return {
        "schemaVersion": 2,
        "id": legacy["id"],
        "actProfile": legacy.get("actProfile"),
        "diagnosis": diagnosis,
        "dialogue": [
            {**entry, "isAiGenerated": False} for entry in legacy.get("dialogue") or []
        ],
        "ritualState": None,
        "initialMetrics": initial_metrics,
        "finalMetrics": None,
        "createdAt": legacy["createdAt"],
        "completedAt": legacy.get("completedAt"),
        "expiresAt": _expiry_from(now).isoformat(),
        "privacyMode": PrivacyMode.PERSIST.value,
        "tags": [],
    }


MIGRATIONS: Dict[int, Migration] = {
    1: migrate_v1_to_v2,
}


def _stored_version(data: Dict[str, Any]) -> int:
    version = data.get("schemaVersion")
    # Records written before versioning carry no schemaVersion at all
    if isinstance(version, bool) or not isinstance(version, int):
        return 1
    return version


def migrate_record(data: Any, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Bring a raw stored record up to CURRENT_SCHEMA_VERSION.

    Raises:
        ValueError: If the record is not an object, its version is newer than
            this code understands, or no migration step exists for it
    """
    if not isinstance(data, dict):
        raise ValueError(f"Stored session must be an object, got {type(data).__name__}")

    now = now or utcnow()
    version = _stored_version(data)

    if version > CURRENT_SCHEMA_VERSION:
        raise ValueError(
            f"Stored schema version {version} is newer than {CURRENT_SCHEMA_VERSION}"
        )

    while version < CURRENT_SCHEMA_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise ValueError(f"No migration from schema version {version}")
        data = step(data, now)
        new_version = _stored_version(data)
        log.info("session_migrated", from_version=version, to_version=new_version)
        version = new_version

    return data


def parse_session(data: Any, now: Optional[datetime] = None) -> Session:
    """Migrate and validate a raw record (all-or-nothing).

    Raises:
        ValueError: On migration failure or pydantic validation failure
        KeyError: If a legacy record lacks a required field
    """
    return Session.model_validate(migrate_record(data, now))


# =============================================================================
# Storage operations
# =============================================================================


async def _discard(store: KeyValueStore, reason: str) -> None:
    try:
        await store.delete(STORAGE_KEY)
    except Exception as e:
        log.warning("session_discard_failed", reason=reason, error=str(e))


async def load_session(
    store: KeyValueStore, now: Optional[datetime] = None
) -> Optional[Session]:
    """Load the active session, or None when absent, corrupted or expired."""
    now = now or utcnow()

    try:
        stored = await store.get(STORAGE_KEY)
    except Exception as e:
        log.warning("session_read_failed", error=str(e))
        await _discard(store, "read_failed")
        return None

    if not stored:
        return None

    try:
        session = parse_session(json.loads(stored), now)
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        # json.JSONDecodeError and pydantic.ValidationError are ValueErrors
        log.warning("session_corrupted", error=str(e))
        await _discard(store, "corrupted")
        return None

    if session.expires_at is not None and as_aware(session.expires_at) < now:
        log.info("session_expired", session_id=session.id)
        await _discard(store, "expired")
        return None

    log.debug("session_loaded", session_id=session.id)
    return session


async def save_session(store: KeyValueStore, session: Session) -> None:
    """Persist the session. Private sessions are never written."""
    if session.privacy_mode == PrivacyMode.PRIVATE:
        return

    try:
        await store.set(STORAGE_KEY, json.dumps(session.to_json_dict()))
    except Exception as e:
        log.warning("session_save_failed", session_id=session.id, error=str(e))


async def delete_session(store: KeyValueStore) -> None:
    """Remove the stored session unconditionally."""
    try:
        await store.delete(STORAGE_KEY)
    except Exception as e:
        log.warning("session_delete_failed", error=str(e))


def create_new_session(
    privacy_mode: PrivacyMode = PrivacyMode.PERSIST, now: Optional[datetime] = None
) -> Session:
    """Build a fresh, empty session.

    Sessions in ``session`` privacy mode carry no expiry: their lifetime is
    bound to the running process instead (see FlowController.shutdown).
    """
    now = now or utcnow()
    privacy_mode = PrivacyMode(privacy_mode)
    expires_at = None if privacy_mode == PrivacyMode.SESSION else _expiry_from(now)

    return Session(
        schema_version=CURRENT_SCHEMA_VERSION,
        id=str(uuid.uuid4()),
        created_at=now,
        expires_at=expires_at,
        privacy_mode=privacy_mode,
    )


# =============================================================================
# Ritual state transitions (pure)
# =============================================================================


def create_ritual_state() -> RitualState:
    return RitualState()


def update_ritual_phase(
    state: RitualState,
    phase_id: str,
    question: str,
    answer: str,
    is_ai_generated: bool,
) -> RitualState:
    """Record an answer and advance one phase (bounded to the last phase)."""
    return state.model_copy(
        update={
            "current_phase_index": min(state.current_phase_index + 1, MAX_PHASE_INDEX),
            "answers": [
                *state.answers,
                RitualAnswer(
                    phase_id=phase_id,
                    question=question,
                    answer=answer,
                    is_ai_generated=is_ai_generated,
                ),
            ],
        }
    )


def pause_ritual(state: RitualState, now: Optional[datetime] = None) -> RitualState:
    """Pause the ritual. Pausing an already paused ritual changes nothing."""
    if state.is_paused:
        return state
    return state.model_copy(update={"is_paused": True, "paused_at": now or utcnow()})


def resume_ritual(state: RitualState) -> RitualState:
    return state.model_copy(update={"is_paused": False, "paused_at": None})


def trip_circuit_breaker(state: RitualState) -> RitualState:
    """Disable AI questions for the rest of the session. There is no untrip."""
    return state.model_copy(
        update={
            "ai_circuit_breaker_tripped": True,
            "is_ai_mode": False,
            "ai_retry_count": 0,
        }
    )


def record_ai_failure(state: RitualState) -> RitualState:
    return state.model_copy(update={"ai_retry_count": state.ai_retry_count + 1})


def reset_ai_retries(state: RitualState) -> RitualState:
    if state.ai_retry_count == 0:
        return state
    return state.model_copy(update={"ai_retry_count": 0})


def add_metrics_to_history(state: RitualState, metrics: ACTMetrics) -> RitualState:
    return state.model_copy(
        update={"metrics_history": [*state.metrics_history, metrics]}
    )


def set_somatic_break_needed(state: RitualState, needed: bool) -> RitualState:
    return state.model_copy(update={"needs_somatic_break": needed})


def complete_somatic_break(state: RitualState) -> RitualState:
    return state.model_copy(
        update={
            "needs_somatic_break": False,
            "somatic_breaks_taken": state.somatic_breaks_taken + 1,
        }
    )


# =============================================================================
# History
# =============================================================================


def project_completed_session(
    session: Session,
    final_intensity: float,
    summary_mode: Optional[SummaryMode] = None,
    now: Optional[datetime] = None,
) -> Optional[CompletedSession]:
    """Summarize a finished session, or None if there is nothing to summarize."""
    if session.act_profile is None or session.diagnosis is None:
        return None

    emotions = session.diagnosis.emotional_history
    return CompletedSession(
        id=session.id,
        created_at=session.created_at,
        completed_at=now or utcnow(),
        core_belief=session.diagnosis.core_belief,
        primary_emotion=emotions[0] if emotions else "",
        profile=session.act_profile.profile,
        initial_intensity=session.diagnosis.intensity,
        final_intensity=final_intensity,
        tags=list(session.tags),
        phases_completed=len(session.dialogue),
        used_ai=any(entry.is_ai_generated for entry in session.dialogue),
        summary_mode=summary_mode,
    )


async def load_history(store: KeyValueStore) -> List[CompletedSession]:
    """Load completed sessions, newest first. Unreadable entries are skipped."""
    try:
        stored = await store.get(HISTORY_KEY)
        if not stored:
            return []
        raw_entries = json.loads(stored)
    except Exception as e:
        log.warning("history_load_failed", error=str(e))
        return []

    if not isinstance(raw_entries, list):
        log.warning("history_malformed", type=type(raw_entries).__name__)
        return []

    history: List[CompletedSession] = []
    for raw in raw_entries:
        try:
            history.append(CompletedSession.model_validate(raw))
        except (ValueError, TypeError) as e:
            log.warning("history_entry_skipped", error=str(e))
    return history


async def _write_history(store: KeyValueStore, history: List[CompletedSession]) -> None:
    payload = json.dumps([entry.to_json_dict() for entry in history])
    await store.set(HISTORY_KEY, payload)


async def save_to_history(
    store: KeyValueStore,
    session: Session,
    final_intensity: float,
    summary_mode: Optional[SummaryMode] = None,
    limit: int = HISTORY_LIMIT,
) -> Optional[CompletedSession]:
    """Prepend the session's summary to history, keeping at most ``limit``.

    A session lacking a profile or diagnosis is silently ignored. An earlier
    entry with the same id is replaced.
    """
    completed = project_completed_session(session, final_intensity, summary_mode)
    if completed is None:
        return None

    try:
        history = await load_history(store)
        updated = [completed, *(h for h in history if h.id != completed.id)][:limit]
        await _write_history(store, updated)
    except Exception as e:
        log.warning("history_save_failed", session_id=session.id, error=str(e))
        return None

    log.info("history_saved", session_id=session.id, history_size=len(updated))
    return completed


async def delete_from_history(store: KeyValueStore, session_id: str) -> bool:
    """Remove one entry. Returns True if an entry was removed."""
    try:
        history = await load_history(store)
        updated = [h for h in history if h.id != session_id]
        await _write_history(store, updated)
    except Exception as e:
        log.warning("history_delete_failed", session_id=session_id, error=str(e))
        return False
    return len(updated) < len(history)


def search_history(query: str, history: List[CompletedSession]) -> List[CompletedSession]:
    """Case-insensitive substring match on belief, primary emotion and tags."""
    if not query.strip():
        return list(history)

    lower = query.lower()

    return [
        entry
        for entry in history
        if lower in entry.core_belief.lower()
        or lower in entry.primary_emotion.lower()
        or any(lower in tag.lower() for tag in entry.tags)
    ]


def merge_histories(
    local_history: List[CompletedSession],
    cloud_history: List[CompletedSession],
    limit: int = HISTORY_LIMIT,
) -> List[CompletedSession]:
    """Union of local and cloud history; local entries win on id clashes."""
    merged: Dict[str, CompletedSession] = {entry.id: entry for entry in cloud_history}
    merged.update({entry.id: entry for entry in local_history})

    return sorted(
        merged.values(),
        key=lambda entry: as_aware(entry.completed_at),
        reverse=True,
    )[:limit]
