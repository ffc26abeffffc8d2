"""Tests for tama.core.composer — LLM wording with deterministic fallbacks."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from tama.core.composer import (
    TAMA_PERSONA,
    ListModified,
    ListShown,
    MessageComposer,
    ReminderCreated,
    ScheduleChanged,
    TaskCompleted,
)
from tama.core.preferences import MorningReview
from tama.data.models import CheckIn

NOW = datetime(2026, 10, 18, 15, 0, tzinfo=timezone.utc)


class TestContexts:
    def test_reminder_created_timed(self):
        ctx = ReminderCreated(task="call mom", time_str="2h")
        assert ctx.fallback() == "Got it, I'll remind you about call mom in 2h."
        assert "in 2h" in ctx.prompt()

    def test_reminder_created_day_only(self):
        ctx = ReminderCreated(task="dentist", time_str="tomorrow", is_day_only=True)
        assert ctx.fallback() == "Got it, dentist is on your list for tomorrow."

    def test_reminder_created_unscheduled_is_honest(self):
        ctx = ReminderCreated(task="call mom", time_str="2h", scheduled=False)
        assert "couldn't set the reminder" in ctx.fallback()
        assert "unreachable" in ctx.prompt()

    def test_task_completed_with_list(self):
        assert TaskCompleted(task="shop", list_name="Groceries").fallback() == (
            "Done with shop and checked off the Groceries list."
        )

    def test_schedule_changed_with_failure(self):
        ctx = ScheduleChanged(what="check-in", time_str="9:15 PM", failed=["weekly summary"])
        assert ctx.fallback() == (
            "Check-in time set to 9:15 PM. I couldn't set up weekly summary though; maybe try again in a bit."
        )
        assert "Sundays" in ctx.prompt()

    def test_list_shown_marks_checked(self):
        ctx = ListShown(name="Groceries", items=[("bread", True), ("eggs", False)])
        assert ctx.fallback() == "Groceries:\n✓ bread\n○ eggs"

    def test_list_modified_rename(self):
        ctx = ListModified(name="Groceries", action="rename", items=[], new_name="Food")
        assert ctx.fallback() == "Renamed Groceries to Food."


class TestMessageComposer:
    @pytest.mark.asyncio
    async def test_uses_llm_text_with_persona(self):
        complete = AsyncMock(return_value="  Nice. That counts 🐾  ")
        composer = MessageComposer(complete=complete)

        text = await composer.acknowledge(TaskCompleted(task="laundry"))

        assert text == "Nice. That counts 🐾"
        kwargs = complete.await_args.kwargs
        assert kwargs["system"].startswith(TAMA_PERSONA)
        assert "laundry" in kwargs["user_message"]

    @pytest.mark.asyncio
    async def test_llm_failure_falls_back(self, composer):
        assert await composer.acknowledge(TaskCompleted(task="laundry")) == "Marked laundry as done."

    @pytest.mark.asyncio
    async def test_empty_llm_output_falls_back(self):
        composer = MessageComposer(complete=AsyncMock(return_value="   "))
        assert await composer.reminder("water plants") == "Just a soft reminder about: water plants"

    @pytest.mark.asyncio
    async def test_nag_level_is_clamped(self):
        complete = AsyncMock(return_value="hey")
        composer = MessageComposer(complete=complete)
        await composer.nag("pay rent", 12)
        assert "Fifth reminder" in complete.await_args.kwargs["system"]

    @pytest.mark.asyncio
    async def test_campaign_fallbacks(self, composer):
        assert await composer.nag("pay rent", 0) == "This came up again: pay rent. Whenever you're ready."
        assert (await composer.final_nag("pay rent")).startswith("Last gentle nudge about pay rent.")
        assert await composer.follow_up("pay rent") == "Just checking this reached you."
        assert "1-5" in await composer.checkin_prompt()
        assert "tomorrow" in await composer.end_of_day()

    @pytest.mark.asyncio
    async def test_weekly_fallback(self, composer):
        checkins = [
            CheckIn(id="1", chat_id=1, date="2026-10-17", rating=4, created_at=NOW),
            CheckIn(id="2", chat_id=1, date="2026-10-18", rating=3, created_at=NOW),
        ]
        text = await composer.weekly_insights(checkins, [], 5)
        assert text == (
            "Weekly Summary\n\nCheck-ins: 2/7 days\nAverage rating: 3.5\nTasks completed: 5"
        )

    @pytest.mark.asyncio
    async def test_weekly_llm_text_gets_header(self):
        complete = AsyncMock(return_value="You had a steady week.")
        composer = MessageComposer(complete=complete)
        text = await composer.weekly_insights([], [], 2)
        assert text == "Weekly Summary\n\nYou had a steady week."
        assert "No check-ins this week." in complete.await_args.kwargs["user_message"]

    @pytest.mark.asyncio
    async def test_morning_review_fallback(self, composer):
        review = MorningReview(overdue=["call bank (2 hours ago)"])
        text = await composer.morning_review(review)
        assert text.startswith("Good morning 🐾")
        assert "call bank" in text
