"""Local telemetry: an append-only, capped event log for debugging.

Events are logged through structlog and kept under ``via_serenis_telemetry``
in the local store (last ``max_events`` only). Telemetry failures are logged
and never affect the flow.
"""

import json
from typing import Any, Dict, List, Optional

import structlog

from serenis.core.config import ritual_config
from serenis.domain.types import TelemetryEvent, TelemetryPayload, utcnow
from serenis.persistence.kv_store import KeyValueStore

log = structlog.get_logger(__name__)

TELEMETRY_STORAGE_KEY = "via_serenis_telemetry"


class TelemetryService:
    """Tracks flow events for one local installation."""

    def __init__(
        self,
        store: KeyValueStore,
        max_events: int = ritual_config.telemetry.max_events,
        enabled: bool = ritual_config.telemetry.enabled,
    ):
        self.store = store
        self.max_events = max_events
        self.enabled = enabled
        self._events: List[TelemetryPayload] = []

    async def load(self) -> None:
        """Restore previously stored events. Unreadable data starts a fresh log."""
        try:
            stored = await self.store.get(TELEMETRY_STORAGE_KEY)
            raw = json.loads(stored) if stored else []
            self._events = [TelemetryPayload.model_validate(e) for e in raw]
        except Exception as e:
            log.warning("telemetry_load_failed", error=str(e))
            self._events = []

    async def _persist(self) -> None:
        if not self.enabled:
            return
        try:
            payload = [e.to_json_dict() for e in self._events[-self.max_events :]]
            await self.store.set(TELEMETRY_STORAGE_KEY, json.dumps(payload))
        except Exception as e:
            log.warning("telemetry_save_failed", error=str(e))

    async def track(
        self,
        event: TelemetryEvent,
        session_id: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> TelemetryPayload:
        payload = TelemetryPayload(
            event=event,
            timestamp=utcnow(),
            session_id=session_id,
            data=data,
        )
        self._events.append(payload)
        if len(self._events) > self.max_events:
            self._events = self._events[-self.max_events :]

        # "event" is reserved by structlog for the message itself
        log.info(
            "telemetry_event",
            telemetry_event=event.value,
            session_id=session_id,
            data=data,
        )
        await self._persist()
        return payload

    def get_events(self, session_id: Optional[str] = None) -> List[TelemetryPayload]:
        if session_id is not None:
            return [e for e in self._events if e.session_id == session_id]
        return list(self._events)

    def get_events_by_type(self, event: TelemetryEvent) -> List[TelemetryPayload]:
        return [e for e in self._events if e.event == event]

    async def clear(self) -> None:
        self._events = []
        try:
            await self.store.delete(TELEMETRY_STORAGE_KEY)
        except Exception as e:
            log.warning("telemetry_clear_failed", error=str(e))

    def disable(self) -> None:
        self.enabled = False

    def enable(self) -> None:
        self.enabled = True

    def export_as_json(self) -> str:
        return json.dumps([e.to_json_dict() for e in self._events], indent=2)
