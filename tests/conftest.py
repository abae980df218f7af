"""
Shared test fixtures.

Stores, sample domain objects and a controller wired to in-memory storage.
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pytest

from serenis.domain.session import create_new_session
from serenis.domain.telemetry import TelemetryService
from serenis.domain.types import (
    DiagnosisData,
    ProfileCategory,
    ProfileResult,
    ProfileScores,
    Session,
)
from serenis.llm.client import LLMClient, LLMResponse
from serenis.persistence.database import init_database
from serenis.persistence.kv_store import MemoryKeyValueStore


class RecordingStore(MemoryKeyValueStore):
    """In-memory store that records every call made against it."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        super().__init__(initial)
        self.calls: List[Tuple[str, str]] = []

    async def get(self, key: str) -> Optional[str]:
        self.calls.append(("get", key))
        return await super().get(key)

    async def set(self, key: str, value: str) -> None:
        self.calls.append(("set", key))
        await super().set(key, value)

    async def delete(self, key: str) -> None:
        self.calls.append(("delete", key))
        await super().delete(key)

    def calls_of(self, op: str, key: Optional[str] = None) -> List[Tuple[str, str]]:
        return [c for c in self.calls if c[0] == op and (key is None or c[1] == key)]


class FailingStore(MemoryKeyValueStore):
    """Store whose every operation raises."""

    async def get(self, key: str) -> Optional[str]:
        raise OSError("disk unavailable")

    async def set(self, key: str, value: str) -> None:
        raise OSError("disk unavailable")

    async def delete(self, key: str) -> None:
        raise OSError("disk unavailable")


@pytest.fixture
def memory_store():
    return MemoryKeyValueStore()


@pytest.fixture
def recording_store():
    return RecordingStore()


@pytest.fixture
async def test_db():
    """Create and initialize a temporary SQLite database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        await init_database(db_path)
        yield db_path


@pytest.fixture
def now():
    return datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_profile():
    return ProfileResult(
        profile=ProfileCategory.A,
        scores=ProfileScores(A=26, B=15, C=12, D=18),
    )


@pytest.fixture
def sample_diagnosis():
    return DiagnosisData(
        core_belief="I am not good enough",
        emotional_history=["shame", "anxiety"],
        triggers=["work reviews"],
        origin="school",
        intensity=8,
    )


@pytest.fixture
def sample_session(sample_profile, sample_diagnosis, now) -> Session:
    """Session with a profile and diagnosis, ready for the ritual."""
    session = create_new_session(now=now)
    return session.model_copy(
        update={"act_profile": sample_profile, "diagnosis": sample_diagnosis}
    )


@pytest.fixture
def telemetry(memory_store):
    return TelemetryService(memory_store, max_events=100, enabled=True)


class FakeLLMClient(LLMClient):
    """Scripted LLM: each call pops the next reply (text or exception)."""

    def __init__(self, *replies: Union[str, Exception]):
        self.replies = list(replies)
        self.prompts: List[Tuple[str, Optional[str]]] = []

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> LLMResponse:
        self.prompts.append((prompt, system))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return LLMResponse(content=reply, model="fake")
