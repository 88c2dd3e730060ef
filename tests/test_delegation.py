from datetime import datetime

import pytest

from taskflow.crud import list_tasks_for_assignee
from taskflow.delegation import (
    RequestConflictError,
    accept_request,
    create_request,
    decline_request,
    get_request,
    list_inbox,
    list_outbox,
    set_request_archived,
)
from taskflow.models import Task, TaskRequest


BOSS = "boss@example.com"
ANA = "ana@example.com"


class RecordingSink:
    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)


def _request(db, sink=None, **kw):
    return create_request(
        db,
        from_user=kw.pop("from_user", BOSS),
        to_user=kw.pop("to_user", ANA),
        title=kw.pop("title", "Draft Q1 plan"),
        description="Outline only",
        priority=kw.pop("priority", "p2"),
        due_date=kw.pop("due_date", "2024-01-15"),
        sink=sink,
    )


def test_create_notifies_recipient(db):
    sink = RecordingSink()
    req = _request(db, sink)
    assert req.status == "pending"
    assert req.priority == "high"
    assert req.task_id is None
    assert [(e.user_email, e.type) for e in sink.events] == [(ANA, "task_request")]


def test_create_validates_input(db):
    with pytest.raises(ValueError):
        _request(db, title="  ")
    with pytest.raises(ValueError):
        _request(db, due_date="next week")
    with pytest.raises(ValueError):
        _request(db, priority="asap")


def test_accept_creates_linked_task(db):
    sink = RecordingSink()
    req = _request(db)
    req, task = accept_request(db, request=req, current_user=ANA, sink=sink, when_utc=datetime(2024, 1, 10, 18, 0))

    assert req.status == "accepted"
    assert req.task_id == task.id
    assert req.responded_at == datetime(2024, 1, 10, 18, 0)
    assert task.assigned_to == ANA
    assert task.created_by == BOSS
    assert task.task_type == "delegated"
    assert task.title == "Draft Q1 plan"
    assert task.priority == "high"
    assert task.due_date == "2024-01-15"
    assert [(e.user_email, e.type, e.task_id) for e in sink.events] == [(BOSS, "task_request_accepted", task.id)]


def test_only_recipient_may_respond(db):
    req = _request(db)
    with pytest.raises(PermissionError):
        accept_request(db, request=req, current_user=BOSS)
    with pytest.raises(PermissionError):
        decline_request(db, request=req, current_user="eve@example.com")


def test_decline_is_terminal_and_creates_nothing(db):
    sink = RecordingSink()
    req = _request(db)
    req = decline_request(db, request=req, current_user=ANA, reason="No bandwidth", sink=sink)
    assert req.status == "declined"
    assert req.decline_reason == "No bandwidth"
    assert req.task_id is None
    assert list_tasks_for_assignee(db, ANA) == []
    assert sink.events[0].user_email == BOSS
    assert "No bandwidth" in sink.events[0].message

    with pytest.raises(RequestConflictError):
        accept_request(db, request=req, current_user=ANA)
    with pytest.raises(RequestConflictError):
        decline_request(db, request=req, current_user=ANA)


def test_second_accept_is_a_conflict(db):
    req = _request(db)
    accept_request(db, request=req, current_user=ANA)
    with pytest.raises(RequestConflictError):
        accept_request(db, request=req, current_user=ANA)
    assert db.query(Task).count() == 1


def test_racing_accepts_create_exactly_one_task(db, session_factory):
    req = _request(db)

    other = session_factory()
    try:
        # Both sides loaded the request while it was still pending.
        stale = other.get(TaskRequest, req.id)
        assert stale.status == "pending"

        _, task = accept_request(db, request=req, current_user=ANA)
        with pytest.raises(RequestConflictError):
            accept_request(other, request=stale, current_user=ANA)
    finally:
        other.close()

    db.expire_all()
    assert db.query(Task).count() == 1
    assert get_request(db, request_id=req.id).task_id == task.id


def test_archive_is_per_viewer(db):
    req = _request(db)
    assert set_request_archived(db, request=req, current_user=ANA) is True
    assert set_request_archived(db, request=req, current_user=ANA) is False

    assert list_inbox(db, user_email=ANA) == []
    assert [r.id for r in list_inbox(db, user_email=ANA, include_archived=True)] == [req.id]
    # The sender's view is untouched and the status did not move.
    assert [r.id for r in list_outbox(db, user_email=BOSS)] == [req.id]
    assert get_request(db, request_id=req.id).status == "pending"

    assert set_request_archived(db, request=req, current_user=ANA, archived=False) is True
    assert [r.id for r in list_inbox(db, user_email=ANA)] == [req.id]

    with pytest.raises(PermissionError):
        set_request_archived(db, request=req, current_user="eve@example.com")


def test_listing_by_status(db):
    a = _request(db, title="A")
    _request(db, title="B")
    accept_request(db, request=a, current_user=ANA)
    assert [r.title for r in list_inbox(db, user_email=ANA, status="pending")] == ["B"]
    assert [r.title for r in list_outbox(db, user_email=BOSS, status="accepted")] == ["A"]
    with pytest.raises(ValueError):
        list_inbox(db, user_email=ANA, status="maybe")
