from datetime import datetime

import pytest

from taskflow.task_items import (
    add_attachment,
    add_comment,
    add_label,
    add_reminder,
    add_subtask,
    make_reminder,
    mark_reminder_sent,
    remove_attachment,
    remove_comment,
    remove_label,
    remove_reminder,
    remove_subtask,
    set_subtask_completed,
    subtask_progress,
)


def test_subtask_operations_return_new_collections():
    original = [{"id": "a", "text": "first", "completed": False}]
    added = add_subtask(original, "second", item_id="b")
    assert isinstance(added, tuple)
    assert len(original) == 1
    assert [s["id"] for s in added] == ["a", "b"]

    toggled = set_subtask_completed(added, "b", True)
    assert added[1]["completed"] is False
    assert toggled[1]["completed"] is True
    assert subtask_progress(toggled) == (1, 2)

    assert [s["id"] for s in remove_subtask(toggled, "a")] == ["b"]


def test_missing_items_raise_key_error():
    with pytest.raises(KeyError):
        remove_subtask([], "nope")
    with pytest.raises(KeyError):
        set_subtask_completed([{"id": "a", "text": "x", "completed": False}], "b", True)
    with pytest.raises(KeyError):
        remove_attachment(["https://a"], "https://b")


def test_blank_subtask_rejected():
    with pytest.raises(ValueError):
        add_subtask([], "   ")


def test_comments_keep_author_and_timestamp():
    when = datetime(2024, 1, 10, 17, 0)
    comments = add_comment(None, author="ana@example.com", text="Looks good", when_utc=when, item_id="c1")
    assert comments == (
        {
            "id": "c1",
            "author": "ana@example.com",
            "text": "Looks good",
            "timestamp": "2024-01-10T17:00:00",
            "attachments": [],
        },
    )
    assert remove_comment(comments, "c1") == ()


def test_reminder_construction_and_sent_marking():
    rel = make_reminder(type="relative", minutes=15, item_id="r1")
    assert rel == {"id": "r1", "type": "relative", "label": "", "sent": False, "minutes": 15}

    absolute = make_reminder(type="absolute", at="2024-01-10T14:00:00-08:00", label="Call", item_id="r2")
    assert absolute["datetime"] == "2024-01-10T14:00:00-08:00"

    items = add_reminder(add_reminder((), rel), absolute)
    sent = mark_reminder_sent(items, "r1", when_utc=datetime(2024, 1, 10, 22, 45))
    assert sent[0]["sent"] is True
    assert sent[0]["sentAt"] == "2024-01-10T22:45:00"
    assert items[0]["sent"] is False
    assert [r["id"] for r in remove_reminder(sent, "r2")] == ["r1"]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"type": "relative"},
        {"type": "relative", "minutes": -5},
        {"type": "absolute", "at": "tomorrow-ish"},
        {"type": "sometime", "minutes": 5},
    ],
)
def test_invalid_reminders_rejected(kwargs):
    with pytest.raises(ValueError):
        make_reminder(**kwargs)


def test_labels_are_deduplicated():
    labels = add_label(["client-work"], "client-work")
    assert labels == ("client-work",)
    assert add_label(labels, " urgent ") == ("client-work", "urgent")
    assert remove_label(("a", "b"), "a") == ("b",)
    assert add_attachment((), "https://x/doc.pdf") == ("https://x/doc.pdf",)
