"""
Optional cloud sync of completed sessions.

Talks to a Supabase-compatible backend over its REST interface:
- ``GET  /auth/v1/user`` resolves the caller's access token to a user id
- ``/rest/v1/sessions`` stores one row per completed session

Sync is best-effort. Nothing here raises: failures come back as a
``SyncResult`` with ``success=False`` (or an empty value) and are logged.
Callers without an access token are treated as anonymous and skipped.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
import structlog

from serenis.core.config import settings
from serenis.domain.session import HISTORY_LIMIT
from serenis.domain.types import CompletedSession, ProfileCategory, Session, utcnow

log = structlog.get_logger(__name__)

SESSIONS_TABLE = "sessions"
DEFAULT_INTENSITY = 5


@dataclass(frozen=True)
class SyncResult:
    success: bool
    synced: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "synced": self.synced, "error": self.error}


def _row_to_completed(row: Dict[str, Any]) -> CompletedSession:
    diagnosis = row.get("diagnosis") or {}
    act_profile = row.get("act_profile") or {}
    dialogue = row.get("dialogue") or []
    emotions = diagnosis.get("emotionalHistory") or []

    return CompletedSession(
        id=row["id"],
        created_at=row["created_at"],
        completed_at=row["completed_at"],
        core_belief=diagnosis.get("coreBelief", ""),
        primary_emotion=emotions[0] if emotions else "",
        profile=ProfileCategory(act_profile.get("profile", ProfileCategory.A.value)),
        initial_intensity=row.get("initial_intensity") or DEFAULT_INTENSITY,
        final_intensity=row.get("final_intensity") or DEFAULT_INTENSITY,
        tags=[],
        phases_completed=len(dialogue),
        used_ai=any(entry.get("isAiGenerated") for entry in dialogue),
    )


class SyncService:
    """Client for the cloud ``sessions`` table."""

    def __init__(self, base_url: str, anon_key: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    async def get_current_user_id(self, access_token: Optional[str]) -> Optional[str]:
        """Resolve an access token to a user id, or None if anonymous/invalid."""
        if not access_token:
            return None
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/auth/v1/user",
                    headers=self._headers(access_token),
                )
                response.raise_for_status()
                return response.json().get("id")
        except (httpx.HTTPError, ValueError) as e:
            log.warning("sync_auth_failed", error=str(e))
            return None

    async def sync_session_to_cloud(
        self,
        session: Session,
        final_intensity: float,
        access_token: Optional[str] = None,
    ) -> SyncResult:
        """Upsert one completed session. Anonymous callers sync nothing."""
        user_id = await self.get_current_user_id(access_token)
        if user_id is None:
            return SyncResult(success=True, synced=0)

        if session.act_profile is None or session.diagnosis is None:
            return SyncResult(success=False, error="Incomplete session")

        row = {
            "id": session.id,
            "user_id": user_id,
            "act_profile": session.act_profile.to_json_dict(),
            "diagnosis": session.diagnosis.to_json_dict(),
            "dialogue": [entry.to_json_dict() for entry in session.dialogue],
            "initial_intensity": session.diagnosis.intensity,
            "final_intensity": final_intensity,
            "completed_at": utcnow().isoformat(),
        }

        result = await self._upsert([row], access_token)
        if result.success:
            log.info("session_synced", session_id=session.id)
        return result

    async def _upsert(self, rows: List[Dict[str, Any]], access_token: str) -> SyncResult:
        headers = {
            **self._headers(access_token),
            "Prefer": "resolution=merge-duplicates,return=minimal",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/rest/v1/{SESSIONS_TABLE}",
                    headers=headers,
                    json=rows,
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            log.warning("session_sync_failed", error=str(e), rows=len(rows))
            return SyncResult(success=False, error=str(e))
        return SyncResult(success=True, synced=len(rows))

    async def load_cloud_history(
        self, access_token: Optional[str] = None, limit: int = HISTORY_LIMIT
    ) -> List[CompletedSession]:
        """Completed cloud sessions, newest first. Empty on any failure."""
        user_id = await self.get_current_user_id(access_token)
        if user_id is None:
            return []

        params = {
            "select": "*",
            "user_id": f"eq.{user_id}",
            "completed_at": "not.is.null",
            "order": "completed_at.desc",
            "limit": str(limit),
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/rest/v1/{SESSIONS_TABLE}",
                    headers=self._headers(access_token),
                    params=params,
                )
                response.raise_for_status()
                rows = response.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("cloud_history_failed", error=str(e))
            return []

        history: List[CompletedSession] = []
        for row in rows or []:
            try:
                history.append(_row_to_completed(row))
            except (KeyError, ValueError, TypeError) as e:
                log.warning("cloud_history_row_skipped", error=str(e))
        return history

    async def delete_cloud_session(
        self, session_id: str, access_token: Optional[str] = None
    ) -> bool:
        user_id = await self.get_current_user_id(access_token)
        if user_id is None:
            return False

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.delete(
                    f"{self.base_url}/rest/v1/{SESSIONS_TABLE}",
                    headers=self._headers(access_token),
                    params={"id": f"eq.{session_id}", "user_id": f"eq.{user_id}"},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            log.warning("cloud_delete_failed", session_id=session_id, error=str(e))
            return False
        return True

    async def sync_all_local_to_cloud(
        self,
        local_history: List[CompletedSession],
        access_token: Optional[str] = None,
    ) -> SyncResult:
        """Upload local history entries the cloud does not have yet."""
        user_id = await self.get_current_user_id(access_token)
        if user_id is None:
            return SyncResult(success=True, synced=0)

        cloud_ids = {h.id for h in await self.load_cloud_history(access_token)}
        to_sync = [h for h in local_history if h.id not in cloud_ids]
        if not to_sync:
            return SyncResult(success=True, synced=0)

        rows = [
            {
                "id": entry.id,
                "user_id": user_id,
                "act_profile": {"profile": entry.profile.value},
                "diagnosis": {
                    "coreBelief": entry.core_belief,
                    "emotionalHistory": [entry.primary_emotion] if entry.primary_emotion else [],
                },
                "dialogue": [],
                "initial_intensity": entry.initial_intensity,
                "final_intensity": entry.final_intensity,
                "created_at": entry.to_json_dict()["createdAt"],
                "completed_at": entry.to_json_dict()["completedAt"],
            }
            for entry in to_sync
        ]
        result = await self._upsert(rows, access_token)
        log.info("local_history_synced", synced=result.synced, success=result.success)
        return result


def get_sync_service() -> Optional[SyncService]:
    """Factory for the sync client. None when no backend is configured."""
    if not settings.sync_configured:
        return None
    return SyncService(
        base_url=settings.supabase_url or "",
        anon_key=settings.supabase_anon_key or "",
    )
