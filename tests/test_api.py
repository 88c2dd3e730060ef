from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from taskflow.auth import get_clock, get_notification_sink
from taskflow.db import get_db
from taskflow.main import app
from taskflow.notifications import DbNotificationSink


BOSS = "boss@example.com"
ANA = "ana@example.com"


def _as(email):
    return {"X-User-Email": email}


@pytest.fixture
def client(session_factory, clock):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notification_sink] = lambda: DbNotificationSink(session_factory)
    # No context manager: startup would create tables on the configured database.
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _create(client, email=ANA, **body):
    body.setdefault("title", "Task")
    r = client.post("/api/tasks/", json=body, headers=_as(email))
    assert r.status_code == 200, r.text
    return r.json()


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.json()["reminders"] is False


def test_identity_header_is_required(client):
    assert client.get("/api/tasks/").status_code == 401
    assert client.get("/api/tasks/", headers=_as("not-an-email")).status_code == 401


def test_create_and_views(client):
    today = _create(client, title="Standup notes", due_date="2024-01-10", due_time="17:00", priority="p2")
    late = _create(client, title="Expense report", due_date="2024-01-09")
    soon = _create(client, title="Plan sprint", due_date="2024-01-12")
    _create(client, title="Someday")

    assert today["priority"] == "high"
    assert today["due_kind"] == "today"
    assert today["due_label"] == "Today"
    assert today["created_by"] == ANA
    assert late["is_overdue"] is True
    assert late["days_overdue"] == 1

    counts = client.get("/api/tasks/counts", headers=_as(ANA)).json()
    assert counts == {"today": 1, "overdue": 1, "upcoming": 1}

    r = client.get("/api/tasks/", params={"view": "upcoming"}, headers=_as(ANA))
    assert [t["id"] for t in r.json()] == [soon["id"]]

    assert len(client.get("/api/tasks/", headers=_as(ANA)).json()) == 4
    assert client.get("/api/tasks/", params={"view": "someday"}, headers=_as(ANA)).status_code == 400
    assert client.get("/api/tasks/", headers=_as(BOSS)).json() == []


def test_create_with_subtasks_and_reminders(client):
    t = _create(
        client,
        title="Launch",
        due_date="2024-01-10",
        due_time="15:00",
        subtasks=["draft", "review"],
        reminders=[
            {"type": "relative", "minutes": 15, "label": "Heads up"},
            {"type": "absolute", "datetime": "2024-01-10T14:00"},
        ],
    )
    assert [s["text"] for s in t["subtasks"]] == ["draft", "review"]
    assert all(s["completed"] is False for s in t["subtasks"])
    assert len(t["reminders"]) == 2
    assert len({r["id"] for r in t["reminders"]}) == 2


def test_validation_and_access_errors(client):
    r = client.post("/api/tasks/", json={"title": "x", "due_date": "2024-13-01"}, headers=_as(ANA))
    assert r.status_code == 400
    r = client.post("/api/tasks/", json={"title": "x", "recurring": "every blue moon"}, headers=_as(ANA))
    assert r.status_code == 400

    t = _create(client, title="Private")
    assert client.get(f"/api/tasks/{t['id']}", headers=_as(BOSS)).status_code == 403
    assert client.patch(f"/api/tasks/{t['id']}", json={"title": "x"}, headers=_as(BOSS)).status_code == 403
    assert client.get("/api/tasks/9999", headers=_as(ANA)).status_code == 404
    assert client.patch(f"/api/tasks/{t['id']}", json={"priority": "p9"}, headers=_as(ANA)).status_code == 400


def test_complete_spawns_once_and_hides_after_a_day(client, clock):
    t = _create(client, title="Water plants", due_date="2024-01-10", recurring="daily")
    assert t["recurring"]["pattern"] == "daily"

    r = client.post(f"/api/tasks/{t['id']}/complete", headers=_as(ANA))
    assert r.status_code == 200
    body = r.json()
    assert body["completed_task"]["status"] == "completed"
    assert body["completed_task"]["completed_date"] is not None
    spawned = body["spawned_task"]
    assert spawned["due_date"] == "2024-01-11"
    assert spawned["due_kind"] == "tomorrow"
    assert spawned["recurring_parent"] == t["id"]
    assert spawned["task_type"] == "recurring_instance"

    again = client.post(f"/api/tasks/{t['id']}/complete", headers=_as(ANA)).json()
    assert again["spawned_task"] is None
    instances = client.get(f"/api/tasks/{t['id']}/instances", headers=_as(ANA)).json()
    assert [i["id"] for i in instances] == [spawned["id"]]

    ids = [x["id"] for x in client.get("/api/tasks/", headers=_as(ANA)).json()]
    assert t["id"] in ids

    clock.advance(hours=25)
    ids = [x["id"] for x in client.get("/api/tasks/", headers=_as(ANA)).json()]
    assert t["id"] not in ids
    assert spawned["id"] in ids


def test_patch_status_routes_through_transitions(client):
    t = _create(client, title="Toggle")
    r = client.patch(f"/api/tasks/{t['id']}", json={"status": "completed"}, headers=_as(ANA))
    assert r.json()["completed_task"]["completed_date"] is not None

    r = client.post(f"/api/tasks/{t['id']}/reopen", params={"status": "in_progress"}, headers=_as(ANA))
    assert r.status_code == 200
    assert r.json()["status"] == "in_progress"
    assert r.json()["completed_date"] is None


def test_subtask_items(client):
    t = _create(client, title="Checklist", subtasks=["one"])
    item_id = t["subtasks"][0]["id"]

    r = client.patch(f"/api/tasks/{t['id']}/subtasks/{item_id}", json={"completed": True}, headers=_as(ANA))
    assert r.json()["subtasks"][0]["completed"] is True

    r = client.post(f"/api/tasks/{t['id']}/subtasks", json={"text": "two"}, headers=_as(ANA))
    assert [s["text"] for s in r.json()["subtasks"]] == ["one", "two"]

    r = client.patch(f"/api/tasks/{t['id']}/subtasks/nope", json={"completed": True}, headers=_as(ANA))
    assert r.status_code == 404

    r = client.post(f"/api/tasks/{t['id']}/labels", json={"name": "client-work"}, headers=_as(ANA))
    assert r.json()["labels"] == ["client-work"]
    r = client.delete(f"/api/tasks/{t['id']}/labels/client-work", headers=_as(ANA))
    assert r.json()["labels"] == []


def test_archive_is_per_viewer(client):
    t = _create(client, BOSS, title="Shared", assigned_to=ANA)
    r = client.post(f"/api/tasks/{t['id']}/archive", headers=_as(ANA))
    assert r.json() == {"archived": True, "changed": True}

    assert client.get("/api/tasks/", headers=_as(ANA)).json() == []
    r = client.get("/api/tasks/", params={"include_archived": True}, headers=_as(ANA))
    assert [x["id"] for x in r.json()] == [t["id"]]

    r = client.post(f"/api/tasks/{t['id']}/unarchive", headers=_as(ANA))
    assert r.json()["changed"] is True
    assert len(client.get("/api/tasks/", headers=_as(ANA)).json()) == 1


def test_reorder_and_delete(client):
    a = _create(client, title="A", priority="low")
    b = _create(client, title="B", priority="urgent")
    assert [x["id"] for x in client.get("/api/tasks/", headers=_as(ANA)).json()] == [b["id"], a["id"]]

    client.post("/api/tasks/reorder", json={"ordered_ids": [a["id"], b["id"]]}, headers=_as(ANA))
    assert [x["id"] for x in client.get("/api/tasks/", headers=_as(ANA)).json()] == [a["id"], b["id"]]

    assert client.delete(f"/api/tasks/{a['id']}", headers=_as(ANA)).json() == {"deleted": a["id"]}
    assert client.get(f"/api/tasks/{a['id']}", headers=_as(ANA)).status_code == 404


def test_request_accept_flow(client):
    r = client.post(
        "/api/requests/",
        json={"to_user": ANA, "title": "Review deck", "priority": "high", "due_date": "2024-01-12"},
        headers=_as(BOSS),
    )
    assert r.status_code == 200
    req = r.json()
    assert req["status"] == "pending"

    inbox = client.get("/api/requests/inbox", headers=_as(ANA)).json()
    assert [x["id"] for x in inbox] == [req["id"]]
    assert client.get("/api/notifications/unread-count", headers=_as(ANA)).json() == {"unread": 1}

    assert client.post(f"/api/requests/{req['id']}/accept", headers=_as(BOSS)).status_code == 403
    assert client.get(f"/api/requests/{req['id']}", headers=_as("eve@example.com")).status_code == 403

    r = client.post(f"/api/requests/{req['id']}/accept", headers=_as(ANA))
    assert r.status_code == 200
    body = r.json()
    assert body["request"]["status"] == "accepted"
    assert body["request"]["task_id"] == body["task"]["id"]
    assert body["task"]["assigned_to"] == ANA
    assert body["task"]["created_by"] == BOSS
    assert body["task"]["task_type"] == "delegated"

    assert client.post(f"/api/requests/{req['id']}/accept", headers=_as(ANA)).status_code == 409

    notes = client.get("/api/notifications/", headers=_as(BOSS)).json()
    assert [n["type"] for n in notes] == ["task_request_accepted"]


def test_request_decline_with_reason(client):
    req = client.post("/api/requests/", json={"to_user": ANA, "title": "Weekend shift"}, headers=_as(BOSS)).json()
    r = client.post(f"/api/requests/{req['id']}/decline", json={"reason": "on leave"}, headers=_as(ANA))
    assert r.status_code == 200
    assert r.json()["status"] == "declined"
    assert r.json()["decline_reason"] == "on leave"

    notes = client.get("/api/notifications/", params={"unread_only": True}, headers=_as(BOSS)).json()
    assert "on leave" in notes[0]["message"]
    assert client.post("/api/notifications/read", headers=_as(BOSS)).json() == {"updated": 1}
    assert client.get("/api/notifications/unread-count", headers=_as(BOSS)).json() == {"unread": 0}

    assert client.get("/api/requests/outbox", params={"status": "declined"}, headers=_as(BOSS)).json()[0]["id"] == req["id"]
    assert client.post(f"/api/requests/{req['id']}/accept", headers=_as(ANA)).status_code == 409


def test_filters_and_presets(client):
    presets = client.get("/api/filters/presets").json()
    assert "preset-p1" in [p["id"] for p in presets]

    urgent = _create(client, title="Fire", priority="urgent")
    _create(client, title="Tidy", priority="low", estimated_time=10)

    r = client.get("/api/tasks/", params={"preset": "preset-p1"}, headers=_as(ANA))
    assert [t["id"] for t in r.json()] == [urgent["id"]]
    assert client.get("/api/tasks/", params={"preset": "preset-nope"}, headers=_as(ANA)).status_code == 404

    r = client.post("/api/filters/", json={"name": "Quick", "criteria": {"estimatedTimeMax": 15}}, headers=_as(ANA))
    assert r.status_code == 200
    fid = r.json()["id"]
    r = client.get("/api/tasks/", params={"filter_id": fid}, headers=_as(ANA))
    assert [t["title"] for t in r.json()] == ["Tidy"]
    assert client.get(f"/api/filters/{fid}", headers=_as(BOSS)).status_code == 403

    r = client.post("/api/filters/apply", json={"criteria": {"priorities": ["p1"]}}, headers=_as(ANA))
    assert [t["title"] for t in r.json()] == ["Fire"]

    r = client.post("/api/filters/", json={"name": "Bad", "criteria": {"dueWithinDays": -1}}, headers=_as(ANA))
    assert r.status_code == 400

    assert client.delete(f"/api/filters/{fid}", headers=_as(ANA)).json() == {"deleted": fid}
    assert client.get("/api/filters/", headers=_as(ANA)).json() == []


def test_stats(client, clock):
    t = _create(client, title="Ship it", priority="urgent")
    client.post(f"/api/tasks/{t['id']}/complete", headers=_as(ANA))
    _create(client, title="Next")

    stats = client.get("/api/stats/productivity", headers=_as(ANA)).json()
    assert stats["total"] == 2
    assert stats["completed"] == 1
    assert stats["completed_today"] == 1
    assert stats["streak"] == 1

    clock.advance(days=3)
    stats = client.get("/api/stats/productivity", headers=_as(ANA)).json()
    assert stats["completed"] == 1
    assert stats["streak"] == 0

    weekly = client.get("/api/stats/weekly", headers=_as(ANA)).json()
    assert len(weekly) == 7
    assert sum(d["completed"] for d in weekly) == 1
