"""Integration tests for API endpoints.

ASGITransport does not run the application lifespan, so each test installs a
controller backed by in-memory storage on ``app.state`` directly.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from serenis.core.config import settings
from serenis.domain.telemetry import TelemetryService
from serenis.persistence.kv_store import MemoryKeyValueStore
from serenis.services.flow_controller import FlowController


PROFILE_ANSWERS = {str(i): (5 if i <= 6 else 2) for i in range(1, 25)}

DIAGNOSIS = {
    "coreBelief": "I am not good enough",
    "emotionalHistory": ["shame"],
    "triggers": ["work reviews"],
    "origin": "school",
    "intensity": 8,
}


@pytest.fixture
async def app(monkeypatch):
    monkeypatch.setattr(settings, "storage_backend", "memory")

    from serenis.main import app

    store = MemoryKeyValueStore()
    app.state.flow_controller = await FlowController.create(
        store, TelemetryService(store, max_events=100)
    )
    yield app
    del app.state.flow_controller


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _prepare(client):
    response = await client.put("/session/profile", json={"answers": PROFILE_ANSWERS})
    assert response.status_code == 200
    response = await client.put("/session/diagnosis", json=DIAGNOSIS)
    assert response.status_code == 200


async def test_root_endpoint(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["name"] == "Serenis Ritual"
    assert "X-Request-ID" in response.headers


async def test_request_id_is_echoed(client):
    response = await client.get("/health/live", headers={"X-Request-ID": "abc123"})

    assert response.headers["X-Request-ID"] == "abc123"


async def test_health_endpoints(client):
    health = (await client.get("/health")).json()

    assert health["status"] == "healthy"
    assert health["components"]["storage"]["backend"] == "memory"
    assert health["components"]["flow_controller"]["ready"] is True
    assert (await client.get("/health/live")).json() == {"status": "alive"}
    assert (await client.get("/health/ready")).status_code == 200


async def test_fresh_session_state(client):
    response = await client.get("/session")

    data = response.json()
    assert data["current_stage"] == "IDLE"
    assert data["available_transitions"] == ["IDLE", "TEST"]
    assert data["has_profile"] is False
    assert data["session"]["schemaVersion"] == 2


async def test_denied_transition_returns_409(client):
    response = await client.post("/session/stage", json={"stage": "ritual"})

    assert response.status_code == 409
    data = response.json()
    assert data["allowed"] is False
    assert data["reason"] == "profile_required"
    assert data["notices"][0]["level"] == "error"


async def test_unknown_stage_is_denied(client):
    response = await client.post("/session/stage", json={"stage": "nowhere"})

    assert response.status_code == 409
    assert response.json()["reason"] == "unknown_stage"


async def test_stage_names_are_case_insensitive(client):
    response = await client.post("/session/stage", json={"stage": " test "})

    assert response.status_code == 200
    assert response.json()["current_stage"] == "TEST"


async def test_start_ritual_before_diagnosis_returns_409(client):
    await client.put("/session/profile", json={"answers": PROFILE_ANSWERS})

    response = await client.post("/ritual/start")

    assert response.status_code == 409
    assert response.json()["reason"] == "diagnosis_required"


async def test_profile_validation(client):
    result = {"profile": "A", "scores": {"A": 1, "B": 1, "C": 1, "D": 1}}
    both = await client.put(
        "/session/profile", json={"answers": PROFILE_ANSWERS, "result": result}
    )
    out_of_range = await client.put("/session/profile", json={"answers": {"1": 9}})

    assert both.status_code == 422
    assert out_of_range.status_code == 422


async def test_question_before_ritual_is_conflict(client):
    response = await client.get("/ritual/question")

    assert response.status_code == 409
    assert response.json()["error"]["type"] == "RitualNotStartedError"


async def test_full_ritual_flow(client):
    await _prepare(client)

    started = await client.post("/ritual/start")
    assert started.status_code == 200
    assert started.json()["current_stage"] == "RITUAL"

    question = (await client.get("/ritual/question")).json()
    assert question["phase_id"] == "certeza"
    assert question["is_ai_generated"] is False
    assert "I am not good enough" in question["question"]

    entry = await client.post(
        "/ritual/entries",
        json={
            "phase_id": question["phase_id"],
            "phase_name": question["phase_name"],
            "question": question["question"],
            "answer": "I am not sure anymore",
        },
    )
    assert entry.status_code == 200
    body = entry.json()
    assert body["crisis"]["is_crisis"] is False
    assert body["state"]["session"]["ritualState"]["currentPhaseIndex"] == 1

    metrics = await client.post("/ritual/metrics", json={"intensity": 6})
    assert metrics.json()["needs_somatic_break"] is False

    completed = await client.post(
        "/ritual/complete", json={"final_intensity": 4, "summary_mode": "textual"}
    )
    assert completed.status_code == 200
    assert completed.json()["current_stage"] == "COMPLETE"
    assert completed.json()["progress_percent"] == 100

    summary = await client.get("/summary", params={"final_intensity": 4})
    assert summary.json()["mode"] == "textual"
    assert "I am not sure anymore" in summary.json()["text"]

    history = (await client.get("/history")).json()
    assert history["total"] == 1
    assert history["entries"][0]["coreBelief"] == "I am not good enough"
    assert (await client.get("/history", params={"q": "nothing"})).json()["total"] == 0

    session_id = history["entries"][0]["id"]
    deleted = await client.delete(f"/history/{session_id}")
    assert deleted.status_code == 200
    assert deleted.json()["total"] == 0
    assert (await client.delete(f"/history/{session_id}")).status_code == 404


async def test_crisis_answer_includes_resources(client):
    await _prepare(client)
    await client.post("/ritual/start")

    response = await client.post(
        "/ritual/entries",
        json={
            "phase_id": "certeza",
            "phase_name": "Verification",
            "question": "How do you know?",
            "answer": "Sometimes I want to end it all",
        },
    )

    crisis = response.json()["crisis"]
    assert crisis["is_crisis"] is True
    assert crisis["reason"] == "keywords"
    assert "international" in crisis["resources"]


async def test_pause_resume_and_breaker(client):
    await _prepare(client)
    await client.post("/ritual/start")

    paused = (await client.post("/ritual/pause")).json()
    assert paused["is_ritual_paused"] is True
    assert paused["notices"][0]["message"] == "Ritual paused. Your progress is saved."

    resumed = (await client.post("/ritual/resume")).json()
    assert resumed["current_stage"] == "RITUAL"

    tripped = (await client.post("/ritual/circuit-breaker")).json()
    assert tripped["ai_circuit_broken"] is True
    assert tripped["is_ai_mode"] is False


async def test_somatic_break_endpoint(client):
    await _prepare(client)
    await client.post("/ritual/start")

    flagged = await client.post("/ritual/somatic-break", json={"needed": True})
    assert flagged.json()["session"]["ritualState"]["needsSomaticBreak"] is True

    done = await client.post("/ritual/somatic-break")
    state = done.json()["session"]["ritualState"]
    assert state["needsSomaticBreak"] is False
    assert state["somaticBreaksTaken"] == 1


async def test_privacy_tags_and_reset(client):
    private = (await client.put("/session/privacy", json={"mode": "private"})).json()
    assert private["session"]["privacyMode"] == "private"

    tagged = (await client.post("/session/tags", json={"tag": "work"})).json()
    assert tagged["session"]["tags"] == ["work"]

    reset = (await client.post("/session/reset", json={"privacy_mode": "session"})).json()
    assert reset["session"]["privacyMode"] == "session"
    assert reset["session"]["tags"] == []
    assert reset["session"]["expiresAt"] is None


async def test_sync_without_backend(client):
    response = await client.post("/history/sync", headers={"Authorization": "Bearer tok"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["synced"] == 0


async def test_telemetry_endpoint(client):
    await client.put("/session/profile", json={"answers": PROFILE_ANSWERS})

    data = (await client.get("/telemetry", params={"event": "test_completed"})).json()

    assert data["total"] == 1
    assert data["events"][0]["event"] == "test_completed"
