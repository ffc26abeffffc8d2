"""
Tama Assistant — Data Models.

Everything Tama remembers lives in the key-value store as JSON records.
These dataclasses are the in-memory shape of those records; encoding and
decoding happens in tama.data.db.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class CampaignPhase(str, Enum):
    """Where a task is in its notification campaign.

    Stored on the task so callbacks never have to infer it from
    nagging_level and qstash_message_id.
    """

    SCHEDULED = "scheduled"      # initial reminder callback outstanding
    UNSCHEDULED = "unscheduled"  # scheduler was unreachable, nothing will fire
    DAY_ONLY = "day_only"        # no campaign, day-based listings only
    REMINDED = "reminded"        # initial reminder sent, not important
    NAGGING = "nagging"          # a nag callback is outstanding
    EXHAUSTED = "exhausted"      # final nag sent, task stays pending
    CLOSED = "closed"            # completed


class ListStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass
class Task:
    """A single trackable obligation."""

    id: str
    chat_id: int
    content: str
    is_important: bool
    next_reminder: datetime
    created_at: datetime
    is_day_only: bool = False
    nagging_level: int = 0
    qstash_message_id: str | None = None
    linked_list_id: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    phase: CampaignPhase = CampaignPhase.UNSCHEDULED

    @property
    def is_pending(self) -> bool:
        return self.status == TaskStatus.PENDING


@dataclass
class ListItem:
    id: str
    content: str
    created_at: datetime
    is_checked: bool = False


@dataclass
class TaskList:
    """A checklist, optionally bound 1:1 to a task (never owned by it)."""

    id: str
    chat_id: int
    name: str
    created_at: datetime
    updated_at: datetime
    items: list[ListItem] = field(default_factory=list)
    linked_task_id: str | None = None
    status: ListStatus = ListStatus.ACTIVE

    @property
    def checked_count(self) -> int:
        return sum(1 for item in self.items if item.is_checked)


@dataclass
class PendingFollowUp:
    """Exists only between "reminder sent" and "user replied or follow-up fired"."""

    task_id: str
    content: str
    qstash_message_id: str | None = None


@dataclass
class UserPreferences:
    """Per-chat clock times and the recurring schedule ids installed for them."""

    chat_id: int
    checkin_time: str = "20:00"          # HH:MM local
    morning_review_time: str = "08:00"   # HH:MM local
    end_of_day_time: str = "21:30"       # HH:MM local
    schedule_ids: dict[str, str] = field(default_factory=dict)  # kind -> schedule id


@dataclass
class BrainDump:
    id: str
    chat_id: int
    content: str
    created_at: datetime


@dataclass
class CheckIn:
    id: str
    chat_id: int
    date: str          # YYYY-MM-DD local
    rating: int        # 1-5
    created_at: datetime
    notes: str | None = None


@dataclass
class ConversationMessage:
    role: str          # "user" | "assistant"
    content: str
    timestamp: datetime
