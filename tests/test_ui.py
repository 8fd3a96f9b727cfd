"""Tests for ui/app.py: HTTP routes and error mapping."""

import pytest
from fastapi.testclient import TestClient

from focusflow.errors import TransientStorageError
from ui.app import app, get_engine

H = {"X-User-Id": "u1"}


@pytest.fixture
def client(engine, user):
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_healthz(client):
    assert client.get("/healthz").json() == {"ok": "true"}


def test_missing_user_header(client):
    assert client.get("/api/tasks").status_code == 401


def test_unknown_user_is_404(client):
    r = client.get("/api/users/me", headers={"X-User-Id": "ghost"})
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "user_not_found"


def test_task_flow(client):
    r = client.post("/api/tasks", json={"title": "Write", "taskDate": "2026-03-11"}, headers=H)
    assert r.status_code == 200
    task_id = r.json()["task"]["id"]

    listing = client.get("/api/tasks", params={"date": "2026-03-11"}, headers=H).json()
    assert listing["limit"] == 3
    assert [t["id"] for t in listing["tasks"]] == [task_id]

    done = client.post(f"/api/tasks/{task_id}/complete", json={}, headers=H).json()
    assert done["xpAwarded"] == 10
    assert done["xpResult"]["totalXP"] == 10

    again = client.post(f"/api/tasks/{task_id}/complete", json={}, headers=H)
    assert again.status_code == 409


def test_daily_limit_is_422(client):
    for i in range(3):
        client.post("/api/tasks", json={"title": f"T{i}"}, headers=H)
    r = client.post("/api/tasks", json={"title": "T4"}, headers=H)
    assert r.status_code == 422
    assert r.json()["error"]["details"] == {"current": 3, "limit": 3}


def test_validation_is_400(client):
    r = client.post("/api/tasks", json={"title": "", "taskDate": "2026-03-11"}, headers=H)
    assert r.status_code == 400
    assert r.json()["ok"] is False


def test_reorder_route(client):
    ids = [client.post("/api/tasks", json={"title": f"T{i}"}, headers=H).json()["task"]["id"] for i in range(2)]
    r = client.post(
        "/api/tasks/reorder",
        json={"taskDate": "2026-03-11", "tasks": [{"id": ids[0], "order": 1}, {"id": ids[1], "order": 0}]},
        headers=H,
    )
    assert [t["id"] for t in r.json()["tasks"]] == [ids[1], ids[0]]


def test_pomodoro_flow(client, engine):
    started = client.post("/api/pomodoro/start", json={"sessionType": "work"}, headers=H)
    session_id = started.json()["session"]["id"]
    assert client.post("/api/pomodoro/start", json={}, headers=H).status_code == 409

    d = client.post(f"/api/pomodoro/{session_id}/distractions", json={"type": "phone", "note": "buzz"}, headers=H)
    assert d.json()["distraction"]["description"] == "buzz"

    active = client.get("/api/pomodoro/active", headers=H).json()
    assert active["session"]["id"] == session_id
    assert len(active["distractions"]) == 1

    engine.clock.advance(minutes=25)
    done = client.post(f"/api/pomodoro/{session_id}/complete", json={"rating": 5}, headers=H).json()
    assert done["xpEarned"] == 25
    assert done["completedOnTime"] is True

    r = client.post(f"/api/pomodoro/{session_id}/complete", json={}, headers=H)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "already_completed"


def test_session_distraction_note_is_capped(client):
    session_id = client.post("/api/pomodoro/start", json={}, headers=H).json()["session"]["id"]
    r = client.post(f"/api/pomodoro/{session_id}/distractions", json={"type": "phone", "note": "x" * 201}, headers=H)
    assert r.status_code == 400


def test_malformed_reorder_is_400(client):
    r = client.post("/api/tasks/reorder", json={"taskDate": "2026-03-11", "tasks": ["abc"]}, headers=H)
    assert r.status_code == 400


def test_cancel_unknown_session_is_404(client):
    assert client.post("/api/pomodoro/nope/cancel", headers=H).status_code == 404


def test_distraction_routes(client):
    session_id = client.post("/api/pomodoro/start", json={}, headers=H).json()["session"]["id"]
    created = client.post(
        "/api/distractions",
        json={"sessionId": session_id, "type": "email", "description": "ping", "severity": 4},
        headers=H,
    ).json()["distraction"]
    resolved = client.post(
        f"/api/distractions/{created['id']}/resolve",
        json={"resolutionMethod": "blocked", "notes": "muted"},
        headers=H,
    ).json()["distraction"]
    assert resolved["description"] == "ping | Resolution: muted"

    listing = client.get("/api/distractions", params={"resolved": "true"}, headers=H).json()
    assert [d["id"] for d in listing["distractions"]] == [created["id"]]
    assert client.delete(f"/api/distractions/{created['id']}", headers=H).status_code == 200


def test_rewards_routes(client):
    progress = client.get("/api/rewards/progress", headers=H).json()["progress"]
    assert progress["nextStreakMilestone"] == 3
    assert progress["currentGoal"] == "Basic"

    rewards = client.post("/api/rewards/check", headers=H).json()["rewards"]
    assert rewards["totalReward"] == 0

    summary = client.post("/api/rewards/sweep").json()["summary"]
    assert summary["processed"] == 1
    status = client.get("/api/rewards/sweep/status").json()["status"]
    assert status["lastRun"]["processed"] == 1


def test_storage_error_is_503(client, engine, monkeypatch):
    def down(*args, **kwargs):
        raise TransientStorageError("disk")

    monkeypatch.setattr(engine.tasks, "list_for_day", down)
    r = client.get("/api/tasks", headers=H)
    assert r.status_code == 503
    assert r.json()["error"]["code"] == "storage_unavailable"
