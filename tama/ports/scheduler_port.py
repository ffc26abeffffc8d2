"""Scheduler port — abstract interface for the delayed-delivery service.

Delivery is at-least-once: a callback may arrive twice, late, or after it
was cancelled. Handlers re-check persisted state on every delivery.
"""

from __future__ import annotations

from typing import Literal, Protocol

OneShotKind = Literal["reminder", "nag", "follow_up"]
RecurringKind = Literal["daily_checkin", "weekly_summary", "end_of_day", "morning_review"]


class SchedulerError(Exception):
    """Raised when a callback or recurring schedule could not be installed."""


class SchedulerPort(Protocol):
    """Abstract scheduler interface used by core modules."""

    async def schedule_one_shot(
        self, chat_id: int, task_id: str, delay_minutes: int, kind: OneShotKind,
    ) -> str: ...

    async def schedule_recurring(
        self, chat_id: int, cron: str, kind: RecurringKind,
    ) -> str: ...

    async def cancel_one_shot(self, message_id: str) -> None: ...

    async def cancel_recurring(self, schedule_id: str) -> None: ...

    def verify_signature(self, signature: str, raw_body: str) -> bool: ...
