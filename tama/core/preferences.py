"""
Tama Assistant — Conversation/Preference Coordinator.

Owns the per-chat recurring campaigns: the daily check-in, the Sunday weekly
summary, the end-of-day send-off and the morning review. Each runs as a cron
schedule in the delivery service; the ids live on UserPreferences.

Changing a time always tears down every schedule referenced by the old
preferences before installing the new set, so at most one schedule per kind
is live for a chat.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from tama.core.time_normalizer import (
    describe_task_time,
    format_clock_time,
    parse_clock,
)
from tama.data.db import ConversationDB, ListDB, TaskDB
from tama.data.models import UserPreferences
from tama.ports.scheduler_port import RecurringKind, SchedulerError, SchedulerPort

logger = logging.getLogger(__name__)

RECURRING_KINDS: tuple[RecurringKind, ...] = (
    "daily_checkin", "weekly_summary", "end_of_day", "morning_review",
)
WEEKLY_SUMMARY_WEEKDAY = 0  # cron day-of-week, Sunday


def daily_cron(hour: int, minute: int) -> str:
    return f"{minute} {hour} * * *"


def weekly_cron(hour: int, minute: int, weekday: int = WEEKLY_SUMMARY_WEEKDAY) -> str:
    return f"{minute} {hour} * * {weekday}"


def build_cron_specs(prefs: UserPreferences) -> dict[RecurringKind, str]:
    """Cron expression per recurring kind, in local wall-clock time."""
    checkin = parse_clock(prefs.checkin_time)
    return {
        "daily_checkin": daily_cron(*checkin),
        "weekly_summary": weekly_cron(*checkin),
        "end_of_day": daily_cron(*parse_clock(prefs.end_of_day_time)),
        "morning_review": daily_cron(*parse_clock(prefs.morning_review_time)),
    }


@dataclass
class ReconcileResult:
    installed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class MorningReview:
    """What the user sees first thing: today's plan, the inbox, and what slipped."""

    today: list[str] = field(default_factory=list)
    inbox: list[str] = field(default_factory=list)
    overdue: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.today or self.inbox or self.overdue)

    def _sections(self) -> list[str]:
        sections = []
        for title, lines in (
            ("Today", self.today),
            ("Inbox", self.inbox),
            ("Still open from before", self.overdue),
        ):
            if lines:
                sections.append(f"{title}:\n" + "\n".join(f"- {line}" for line in lines))
        return sections

    def describe(self) -> str:
        if self.is_empty:
            return "Here's my morning overview data:\n\nNothing scheduled today, the inbox is empty and nothing is overdue."
        return "Here's my morning overview data:\n\n" + "\n\n".join(self._sections())

    def fallback(self) -> str:
        if self.is_empty:
            return "Good morning 🐾\n\nNothing scheduled today. Enjoy the open space."
        return "Good morning 🐾\n\n" + "\n\n".join(self._sections())


class PreferenceCoordinator:
    """Keeps each chat's recurring schedules in line with its preferences."""

    def __init__(
        self,
        conversations: ConversationDB,
        tasks: TaskDB,
        lists: ListDB,
        scheduler: SchedulerPort,
        timezone: str | None = None,
    ) -> None:
        if timezone is None:
            from tama.config import settings
            timezone = settings.TIMEZONE

        self._conversations = conversations
        self._tasks = tasks
        self._lists = lists
        self._scheduler = scheduler
        self._tz = timezone

    async def ensure_defaults(self, chat_id: int) -> ReconcileResult | None:
        """Install the default bundle until every recurring kind has a schedule. Never raises."""
        existing = await self._conversations.get_preferences(chat_id)
        if existing is not None and set(RECURRING_KINDS) <= existing.schedule_ids.keys():
            return None

        prefs = existing or UserPreferences(chat_id=chat_id)
        try:
            result = await self._reconcile(prefs)
        except Exception:
            logger.exception("Failed to install default schedules for chat %d", chat_id)
            return None
        if not result.ok:
            logger.error("Default schedules for chat %d partially failed: %s", chat_id, result.failed)
        return result

    async def set_checkin_time(self, chat_id: int, hour: int, minute: int) -> ReconcileResult:
        prefs = await self._load(chat_id)
        prefs.checkin_time = f"{hour:02d}:{minute:02d}"
        return await self._reconcile(prefs)

    async def set_morning_review_time(self, chat_id: int, hour: int, minute: int) -> ReconcileResult:
        prefs = await self._load(chat_id)
        prefs.morning_review_time = f"{hour:02d}:{minute:02d}"
        return await self._reconcile(prefs)

    async def _load(self, chat_id: int) -> UserPreferences:
        return await self._conversations.get_preferences(chat_id) or UserPreferences(chat_id=chat_id)

    async def _reconcile(self, prefs: UserPreferences) -> ReconcileResult:
        """Cancel every old schedule, install the full set, persist the new ids."""
        for kind, schedule_id in prefs.schedule_ids.items():
            logger.debug("Removing %s schedule %s for chat %d", kind, schedule_id, prefs.chat_id)
            await self._scheduler.cancel_recurring(schedule_id)

        result = ReconcileResult()
        new_ids: dict[str, str] = {}
        for kind, cron in build_cron_specs(prefs).items():
            try:
                new_ids[kind] = await self._scheduler.schedule_recurring(prefs.chat_id, cron, kind)
                result.installed.append(kind)
            except SchedulerError as exc:
                logger.error("Could not install %s for chat %d: %s", kind, prefs.chat_id, exc)
                result.failed.append(kind)

        prefs.schedule_ids = new_ids
        await self._conversations.save_preferences(prefs)
        logger.info(
            "Schedules for chat %d: installed=%s failed=%s",
            prefs.chat_id, result.installed, result.failed,
        )
        return result

    async def build_morning_review(self, chat_id: int) -> MorningReview:
        today, inbox, overdue = await asyncio.gather(
            self._tasks.get_todays_tasks(chat_id),
            self._lists.get_unchecked_inbox_items(chat_id),
            self._tasks.get_overdue_tasks(chat_id),
        )
        overdue_ids = {t.id for t in overdue}

        review = MorningReview()
        for task in today:
            if task.id in overdue_ids:
                continue
            if task.is_day_only:
                review.today.append(task.content)
            else:
                review.today.append(f"{task.content} at {format_clock_time(task.next_reminder, self._tz)}")
        review.inbox = [item.content for item in inbox]
        review.overdue = [
            f"{task.content} ({describe_task_time(task, self._tz)})" for task in overdue
        ]
        return review
