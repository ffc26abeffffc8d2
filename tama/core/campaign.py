"""
Tama Assistant — Notification Campaign Engine.

Drives a task from its initial reminder through the optional follow-up and
the escalating nags, and handles the recurring check-in style callbacks.

Callbacks arrive at-least-once and may be late or duplicated, so every
handler starts with a defensive re-check: reload the task, confirm it is
still pending and in the phase this callback expects, and otherwise return
without side effects.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import timedelta
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from tama.core.composer import MessageComposer
from tama.core.time_normalizer import utcnow
from tama.data.db import ConversationDB, TaskDB
from tama.data.models import CampaignPhase, Task
from tama.ports.notification_port import NotificationPort
from tama.ports.scheduler_port import SchedulerError, SchedulerPort

logger = logging.getLogger(__name__)

# Nag gaps in minutes, indexed by nagging level before the increment.
NAG_LADDER_MINUTES = (60, 120, 240, 360, 480)
MAX_NAGGING_LEVEL = 5
FOLLOW_UP_DELAY_MINUTES = (5, 10)

NotificationKind = Literal[
    "reminder", "nag", "follow_up",
    "daily_checkin", "weekly_summary", "end_of_day", "morning_review",
]
TASK_KINDS = frozenset({"reminder", "nag", "follow_up"})


class NotificationPayload(BaseModel):
    """Body of a scheduler callback: {"chatId": 1, "taskId": "...", "type": "nag"}."""

    model_config = ConfigDict(populate_by_name=True)

    chat_id: int = Field(alias="chatId")
    task_id: str | None = Field(default=None, alias="taskId")
    type: NotificationKind


def calculate_next_nag_delay(nagging_level: int, is_important: bool) -> int:
    """Minutes until the next nag; important tasks run the ladder at double speed."""
    base = NAG_LADDER_MINUTES[min(max(nagging_level, 0), len(NAG_LADDER_MINUTES) - 1)]
    return round(base * (0.5 if is_important else 1))


class CampaignEngine:
    """Schedules and executes each task's notification campaign."""

    def __init__(
        self,
        tasks: TaskDB,
        conversations: ConversationDB,
        scheduler: SchedulerPort,
        notifier: NotificationPort,
        composer: MessageComposer,
        preferences=None,
        rng: random.Random | None = None,
    ) -> None:
        self._tasks = tasks
        self._conversations = conversations
        self._scheduler = scheduler
        self._notifier = notifier
        self._composer = composer
        self._preferences = preferences
        self._rng = rng or random.Random()

        self._handlers = {
            "reminder": self._on_reminder,
            "nag": self._on_nag,
            "follow_up": self._on_follow_up,
            "daily_checkin": self._on_daily_checkin,
            "weekly_summary": self._on_weekly_summary,
            "end_of_day": self._on_end_of_day,
            "morning_review": self._on_morning_review,
        }

    # ------------------------------------------------------------------
    # Starting and stopping
    # ------------------------------------------------------------------

    async def start(self, task: Task, delay_minutes: int) -> Task:
        """Attach the initial reminder callback to a freshly created timed task.

        The task is stored as SCHEDULED before publishing, so a reminder due
        now can be delivered before the message id is known. A scheduler
        failure rolls it back to UNSCHEDULED.
        """
        if task.is_day_only:
            return task

        task.phase = CampaignPhase.SCHEDULED
        task.qstash_message_id = None
        await self._tasks.update_task(task)
        try:
            message_id = await self._scheduler.schedule_one_shot(
                task.chat_id, task.id, max(delay_minutes, 0), "reminder",
            )
        except SchedulerError as exc:
            logger.error("Could not schedule reminder for task %s: %s", task.id, exc)
            task.phase = CampaignPhase.UNSCHEDULED
            await self._tasks.update_task(task)
            return task

        current = await self._tasks.get_task(task.chat_id, task.id)
        if current is None:
            return task
        if current.phase == CampaignPhase.SCHEDULED and current.qstash_message_id is None:
            current.qstash_message_id = message_id
            await self._tasks.update_task(current)
        else:
            logger.debug("Reminder for task %s already delivered while scheduling", task.id)
        return current

    async def stop(self, task: Task) -> None:
        """Cancel the outstanding callback, if any. Persisting the task is the caller's job."""
        if task.qstash_message_id:
            await self._scheduler.cancel_one_shot(task.qstash_message_id)
            task.qstash_message_id = None

    async def suppress_follow_up(self, chat_id: int) -> None:
        """The user said something: drop any pending follow-up and its callback."""
        pending = await self._conversations.get_pending_follow_up(chat_id)
        if pending is None:
            return
        await self._conversations.clear_pending_follow_up(chat_id)
        if pending.qstash_message_id:
            await self._scheduler.cancel_one_shot(pending.qstash_message_id)
        logger.debug("Follow-up for task %s suppressed by user activity", pending.task_id)

    # ------------------------------------------------------------------
    # Callback dispatch
    # ------------------------------------------------------------------

    async def handle_callback(
        self, payload: NotificationPayload, delivery_id: str | None = None,
    ) -> bool:
        """Run the handler for one delivery. Returns False when it was a no-op."""
        if payload.type in TASK_KINDS and not payload.task_id:
            logger.warning("Dropping %s callback without taskId for chat %d", payload.type, payload.chat_id)
            return False

        handler = self._handlers[payload.type]
        acted = await handler(payload, delivery_id)
        logger.info(
            "Callback %s chat=%d task=%s → %s",
            payload.type, payload.chat_id, payload.task_id, "handled" if acted else "no-op",
        )
        return acted

    async def _load_live_task(
        self, payload: NotificationPayload, expected: CampaignPhase, delivery_id: str | None,
    ) -> Task | None:
        """Defensive re-check: the task as persisted, or None if this delivery is moot.

        A task with no recorded message id accepts any delivery for its phase.
        """
        task = await self._tasks.get_task(payload.chat_id, payload.task_id)
        if task is None or not task.is_pending:
            return None
        if task.phase != expected:
            logger.info("Task %s is %s, ignoring %s callback", task.id, task.phase.value, payload.type)
            return None
        if delivery_id and task.qstash_message_id and delivery_id != task.qstash_message_id:
            logger.info("Stale delivery %s for task %s (current %s)", delivery_id, task.id, task.qstash_message_id)
            return None
        return task

    # ------------------------------------------------------------------
    # Task campaign
    # ------------------------------------------------------------------

    async def _on_reminder(self, payload: NotificationPayload, delivery_id: str | None) -> bool:
        task = await self._load_live_task(payload, CampaignPhase.SCHEDULED, delivery_id)
        if task is None:
            return False

        await self._notifier.send_message(task.chat_id, await self._composer.reminder(task.content))
        await self._schedule_follow_up(task)

        if task.is_important:
            await self._schedule_nag(task)
        else:
            task.phase = CampaignPhase.REMINDED
            task.qstash_message_id = None
        await self._tasks.update_task(task)
        return True

    async def _on_nag(self, payload: NotificationPayload, delivery_id: str | None) -> bool:
        task = await self._load_live_task(payload, CampaignPhase.NAGGING, delivery_id)
        if task is None:
            return False

        if task.nagging_level >= MAX_NAGGING_LEVEL:
            await self._notifier.send_message(task.chat_id, await self._composer.final_nag(task.content))
            task.phase = CampaignPhase.EXHAUSTED
            task.qstash_message_id = None
            logger.info("Task %s reached the last nag; campaign exhausted", task.id)
        else:
            text = await self._composer.nag(task.content, task.nagging_level - 1)
            await self._notifier.send_message(task.chat_id, text)
            await self._schedule_nag(task)

        await self._tasks.update_task(task)
        return True

    async def _schedule_nag(self, task: Task) -> None:
        """Schedule the next rung; on failure the campaign ends quietly after this message."""
        delay = calculate_next_nag_delay(task.nagging_level, task.is_important)
        try:
            message_id = await self._scheduler.schedule_one_shot(task.chat_id, task.id, delay, "nag")
        except SchedulerError as exc:
            logger.error("Could not schedule nag for task %s: %s", task.id, exc)
            task.phase = CampaignPhase.REMINDED if task.nagging_level == 0 else CampaignPhase.EXHAUSTED
            task.qstash_message_id = None
            return

        task.nagging_level += 1
        task.next_reminder = utcnow() + timedelta(minutes=delay)
        task.qstash_message_id = message_id
        task.phase = CampaignPhase.NAGGING

    async def _schedule_follow_up(self, task: Task) -> None:
        delay = self._rng.randint(*FOLLOW_UP_DELAY_MINUTES)
        try:
            message_id = await self._scheduler.schedule_one_shot(task.chat_id, task.id, delay, "follow_up")
        except SchedulerError as exc:
            logger.error("Could not schedule follow-up for task %s: %s", task.id, exc)
            return
        await self._conversations.set_pending_follow_up(task.chat_id, task.id, task.content, message_id)

    async def _on_follow_up(self, payload: NotificationPayload, delivery_id: str | None) -> bool:
        pending = await self._conversations.get_pending_follow_up(payload.chat_id)
        if pending is None or pending.task_id != payload.task_id:
            return False
        if delivery_id and pending.qstash_message_id and delivery_id != pending.qstash_message_id:
            return False

        task = await self._tasks.get_task(payload.chat_id, payload.task_id)
        if task is None or not task.is_pending:
            await self._conversations.clear_pending_follow_up(payload.chat_id)
            return False

        await self._notifier.send_message(task.chat_id, await self._composer.follow_up(task.content))
        await self._conversations.clear_pending_follow_up(payload.chat_id)
        return True

    # ------------------------------------------------------------------
    # Recurring campaigns
    # ------------------------------------------------------------------

    async def _on_daily_checkin(self, payload: NotificationPayload, delivery_id: str | None) -> bool:
        await self._notifier.send_message(payload.chat_id, await self._composer.checkin_prompt())
        await self._conversations.mark_awaiting_checkin(payload.chat_id)
        return True

    async def _on_weekly_summary(self, payload: NotificationPayload, delivery_id: str | None) -> bool:
        checkins, dumps, completed = await asyncio.gather(
            self._conversations.get_weekly_checkins(payload.chat_id),
            self._conversations.get_weekly_dumps(payload.chat_id),
            self._tasks.get_weekly_completed_count(payload.chat_id),
        )
        if not checkins and not dumps and not completed:
            logger.info("Nothing to summarize for chat %d this week", payload.chat_id)
            return False

        text = await self._composer.weekly_insights(checkins, dumps, completed)
        await self._notifier.send_message(payload.chat_id, text)
        return True

    async def _on_end_of_day(self, payload: NotificationPayload, delivery_id: str | None) -> bool:
        await self._notifier.send_message(payload.chat_id, await self._composer.end_of_day())
        return True

    async def _on_morning_review(self, payload: NotificationPayload, delivery_id: str | None) -> bool:
        if self._preferences is None:
            logger.warning("Morning review requested but no preference coordinator is wired")
            return False

        review = await self._preferences.build_morning_review(payload.chat_id)
        await self._notifier.send_message(payload.chat_id, await self._composer.morning_review(review))
        return True
