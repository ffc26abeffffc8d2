"""Tests for tama.data.models — record dataclasses."""

from dataclasses import asdict
from datetime import datetime, timezone

from tama.data.models import (
    CampaignPhase,
    ListItem,
    ListStatus,
    Task,
    TaskList,
    TaskStatus,
    UserPreferences,
)

NOW = datetime(2026, 10, 18, 15, 0, tzinfo=timezone.utc)


def test_task_defaults():
    task = Task(id="t1", chat_id=1, content="call mom", is_important=False, next_reminder=NOW, created_at=NOW)
    assert task.status == TaskStatus.PENDING
    assert task.phase == CampaignPhase.UNSCHEDULED
    assert task.nagging_level == 0
    assert task.qstash_message_id is None
    assert task.linked_list_id is None
    assert task.is_day_only is False
    assert task.is_pending is True


def test_completed_task_is_not_pending():
    task = Task(
        id="t1", chat_id=1, content="x", is_important=False, next_reminder=NOW, created_at=NOW,
        status=TaskStatus.COMPLETED,
    )
    assert task.is_pending is False


def test_enums_serialize_as_strings():
    assert TaskStatus.COMPLETED == "completed"
    assert CampaignPhase.EXHAUSTED.value == "exhausted"
    assert ListStatus("active") is ListStatus.ACTIVE


def test_list_checked_count():
    task_list = TaskList(
        id="l1", chat_id=1, name="Groceries", created_at=NOW, updated_at=NOW,
        items=[
            ListItem(id="i1", content="bread", created_at=NOW, is_checked=True),
            ListItem(id="i2", content="eggs", created_at=NOW),
        ],
    )
    assert task_list.checked_count == 1
    assert task_list.status == ListStatus.ACTIVE


def test_lists_do_not_share_items():
    a = TaskList(id="a", chat_id=1, name="A", created_at=NOW, updated_at=NOW)
    b = TaskList(id="b", chat_id=1, name="B", created_at=NOW, updated_at=NOW)
    a.items.append(ListItem(id="i", content="x", created_at=NOW))
    assert b.items == []


def test_preferences_defaults():
    prefs = UserPreferences(chat_id=7)
    assert asdict(prefs) == {
        "chat_id": 7,
        "checkin_time": "20:00",
        "morning_review_time": "08:00",
        "end_of_day_time": "21:30",
        "schedule_ids": {},
    }
