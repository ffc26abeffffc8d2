"""
Tama Assistant — Message Composer.

Every user-visible sentence goes through here. Each message has a prompt for
the LLM and a deterministic fallback, so a slow or failing provider degrades
the wording, never the behaviour.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

from tama.core import llm
from tama.data.models import BrainDump, CheckIn, ConversationMessage

if TYPE_CHECKING:
    from tama.core.preferences import MorningReview

logger = logging.getLogger(__name__)

TAMA_PERSONA = """\
You are Tama, a cozy cat-girl companion supporting a user with ADHD.

You're not a coach or a manager. You're a friend who is good at holding space,
remembering things, and offering gentle nudges when asked.

Personality:
- Warm, patient, genuinely curious about the user's day
- You care about how they're doing, not about productivity
- Forgetfulness and procrastination are part of the landscape, not problems to fix
- Light playfulness is welcome when the moment fits

Communication style:
- Short and conversational, usually 1-2 sentences
- Sound like a friend texting, not a careful assistant
- Prefer "maybe", "if you want", "we could" over commands
- Mostly skip exclamation points
- 🐾 is your thing; use it when it feels natural

Reminders are soft nudges. Missed tasks are just missed tasks; dropping something is always valid.
Celebrations stay small: "Nice." / "That counts." / "Look at you."
"""

_ACK_INSTRUCTIONS = (
    "Generate a response acknowledging an action. Keep it to 1-2 sentences. "
    "Be warm but brief. For lists of tasks or items you may use bullet points."
)

# Nag tone by level; level 0 is the first nag after the initial reminder.
_NAG_STYLES = {
    0: "This is the first gentle nudge. Frame it as 'just passing this along' or 'in case now's a good time.'",
    1: "Second soft reminder. Maybe acknowledge it came up again. Offer to reschedule or drop it if needed.",
    2: "Third reminder. Stay gentle. You could mention you're still holding onto this for them.",
    3: "Fourth reminder. Remain calm and non-judgmental. Offer options: reschedule, break it down, or let it go.",
    4: "Fifth reminder. No pressure at all; it's fine either way.",
}

CompleteFn = Callable[..., Awaitable[str]]


# ---------------------------------------------------------------------------
# Action contexts
# ---------------------------------------------------------------------------


@dataclass
class ReminderCreated:
    task: str
    time_str: str
    is_important: bool = False
    is_day_only: bool = False
    scheduled: bool = True

    def prompt(self) -> str:
        when = f"on {self.time_str}" if self.is_day_only else f"in {self.time_str}"
        text = f'The user just set a reminder for "{self.task}" {when}.'
        if self.is_important:
            text += " They marked it as important, so I'll keep nudging until it's done."
        if not self.scheduled:
            text += " The reminder service is unreachable right now, so mention it is saved but the nudge may not arrive."
        return text + " Acknowledge this warmly and briefly."

    def fallback(self) -> str:
        if self.is_day_only:
            text = f"Got it, {self.task} is on your list for {self.time_str}."
        else:
            text = f"Got it, I'll remind you about {self.task} in {self.time_str}."
        if not self.scheduled:
            text += " (I saved it, but couldn't set the reminder just now.)"
        return text


@dataclass
class MultipleRemindersCreated:
    reminders: list[tuple[str, str]]  # (task, time_str)

    def prompt(self) -> str:
        lines = "\n".join(f'- "{task}" in {when}' for task, when in self.reminders)
        return f"The user just created {len(self.reminders)} reminders:\n{lines}\nConfirm briefly that they're set."

    def fallback(self) -> str:
        return f"Set {len(self.reminders)} reminders for you."


@dataclass
class ReminderWithListCreated:
    task: str
    time_str: str
    list_name: str
    item_count: int
    is_important: bool = False

    def prompt(self) -> str:
        text = (
            f'The user just set a reminder for "{self.task}" in {self.time_str}, with a linked list '
            f'called "{self.list_name}" containing {self.item_count} items.'
        )
        if self.is_important:
            text += " They marked it as important."
        return text + " Acknowledge warmly, mentioning both the reminder and the list."

    def fallback(self) -> str:
        return (
            f"Got it, I'll remind you about {self.task} in {self.time_str}. "
            f"Keeping track of {self.item_count} items on your {self.list_name} list."
        )


@dataclass
class BrainDumpSaved:
    content: str

    def prompt(self) -> str:
        return (
            f'The user just captured a thought: "{self.content}". Acknowledge that it is saved '
            "and they'll see it in their weekly summary. Keep it very brief."
        )

    def fallback(self) -> str:
        return "Got it, saved that thought."


@dataclass
class InboxItemAdded:
    item: str

    def prompt(self) -> str:
        return f'The user added "{self.item}" to their inbox for later. It will show up in their morning review. Acknowledge briefly.'

    def fallback(self) -> str:
        return f"Added {self.item} to your inbox."


@dataclass
class TaskCompleted:
    task: str
    list_name: str | None = None

    def prompt(self) -> str:
        if self.list_name:
            return (
                f'The user just completed "{self.task}" which had a linked list "{self.list_name}". '
                "Both are now done. Give a calm acknowledgment."
            )
        return f'The user just marked "{self.task}" as done. Give a calm, proportional acknowledgment.'

    def fallback(self) -> str:
        if self.list_name:
            return f"Done with {self.task} and checked off the {self.list_name} list."
        return f"Marked {self.task} as done."


@dataclass
class TaskCancelled:
    task: str

    def prompt(self) -> str:
        return f'The user just cancelled the task "{self.task}". Acknowledge neutrally.'

    def fallback(self) -> str:
        return f"Cancelled {self.task}."


@dataclass
class TasksCancelled:
    tasks: list[str]

    def prompt(self) -> str:
        lines = "\n".join(f'- "{t}"' for t in self.tasks)
        return f"The user just cancelled {len(self.tasks)} tasks:\n{lines}\nAcknowledge neutrally; it's okay to change priorities."

    def fallback(self) -> str:
        return f"Cancelled {len(self.tasks)} tasks."


@dataclass
class TaskListing:
    lines: list[str]  # "call mom (in 2 hours)"

    def prompt(self) -> str:
        numbered = "\n".join(f"{i}. {line}" for i, line in enumerate(self.lines, 1))
        return f"Show the user their pending tasks:\n{numbered}\n\nPresent them clearly as a numbered list."

    def fallback(self) -> str:
        return "\n".join(f"{i}. {line}" for i, line in enumerate(self.lines, 1))


@dataclass
class NoTasks:
    def prompt(self) -> str:
        return "The user asked for their tasks but they have nothing pending. Let them know gently."

    def fallback(self) -> str:
        return "No pending tasks right now."


@dataclass
class TaskNotFound:
    action: str  # "done" | "cancel"

    def prompt(self) -> str:
        verb = "done" if self.action == "done" else "cancelled"
        return f"The user tried to mark a task as {verb}, but there is no matching pending task. Gently let them know."

    def fallback(self) -> str:
        return "I couldn't find a pending task matching that."


@dataclass
class CheckinLogged:
    rating: int
    has_notes: bool = False

    def prompt(self) -> str:
        text = f"The user just completed their daily check-in with a rating of {self.rating}/5."
        if self.has_notes:
            text += " They also included some notes."
        return text + " Respond appropriately to their rating."

    def fallback(self) -> str:
        return f"Logged your check-in: {self.rating}/5."


@dataclass
class ScheduleChanged:
    what: str        # "check-in" | "morning review"
    time_str: str
    failed: list[str] = field(default_factory=list)

    def prompt(self) -> str:
        text = f"The user just set their {self.what} time to {self.time_str}. Confirm this briefly."
        if self.what == "check-in":
            text += " Their weekly summary will arrive Sundays at this time too."
        if self.failed:
            text += (
                f" Some scheduled messages ({', '.join(self.failed)}) could not be set up. "
                "Tell them gently and suggest trying again in a bit."
            )
        return text

    def fallback(self) -> str:
        text = f"{self.what.capitalize()} time set to {self.time_str}."
        if self.failed:
            text += f" I couldn't set up {', '.join(self.failed)} though; maybe try again in a bit."
        return text


@dataclass
class ListCreated:
    name: str
    item_count: int

    def prompt(self) -> str:
        return f'The user just created a list called "{self.name}" with {self.item_count} items. Acknowledge briefly.'

    def fallback(self) -> str:
        return f"Created your {self.name} list with {self.item_count} items."


@dataclass
class ListsShown:
    lists: list[tuple[str, int, int]]  # (name, checked, total)

    def _lines(self) -> list[str]:
        return [f"{name} ({checked}/{total})" for name, checked, total in self.lists]

    def prompt(self) -> str:
        lines = "\n".join(f"- {line}" for line in self._lines())
        return f"Show the user their lists:\n{lines}\n\nPresent this clearly."

    def fallback(self) -> str:
        return "\n".join(self._lines())


@dataclass
class ListShown:
    name: str
    items: list[tuple[str, bool]]  # (content, is_checked)
    linked_task: str | None = None
    linked_task_time: str | None = None

    def _lines(self) -> str:
        return "\n".join(f"{'✓' if checked else '○'} {content}" for content, checked in self.items)

    def prompt(self) -> str:
        text = f'Show the user their "{self.name}" list:\n{self._lines() or "(empty)"}'
        if self.linked_task:
            text += f'\nThis list is linked to a reminder: "{self.linked_task}" ({self.linked_task_time})'
        return text + "\n\nPresent this clearly."

    def fallback(self) -> str:
        return f"{self.name}:\n{self._lines() or '(empty)'}"


@dataclass
class NoLists:
    def prompt(self) -> str:
        return "The user asked for their lists but they don't have any. Let them know gently."

    def fallback(self) -> str:
        return "You don't have any lists yet."


@dataclass
class ListNotFound:
    def prompt(self) -> str:
        return "The user referred to a list that doesn't exist. Let them know gently."

    def fallback(self) -> str:
        return 'Couldn\'t find that list. Say "show my lists" to see what\'s available.'


@dataclass
class ListModified:
    name: str
    action: str
    items: list[str] = field(default_factory=list)
    new_name: str | None = None

    _VERBS = {
        "add_items": "Added {items} to",
        "remove_items": "Removed {items} from",
        "check_items": "Checked off {items} on",
        "uncheck_items": "Unchecked {items} on",
    }

    def prompt(self) -> str:
        if self.action == "rename":
            return f'Renamed the list from "{self.name}" to "{self.new_name}". Acknowledge briefly.'
        verb = self._VERBS.get(self.action, "Modified").format(items=", ".join(self.items) or "nothing")
        return f'{verb} the "{self.name}" list. Acknowledge briefly.'

    def fallback(self) -> str:
        if self.action == "rename":
            return f"Renamed {self.name} to {self.new_name}."
        return f"Updated your {self.name} list."


@dataclass
class ListDeleted:
    name: str

    def prompt(self) -> str:
        return f'The user deleted the "{self.name}" list. Acknowledge neutrally.'

    def fallback(self) -> str:
        return f"Deleted the {self.name} list."


ActionContext = (
    ReminderCreated | MultipleRemindersCreated | ReminderWithListCreated | BrainDumpSaved
    | InboxItemAdded | TaskCompleted | TaskCancelled | TasksCancelled | TaskListing | NoTasks
    | TaskNotFound | CheckinLogged | ScheduleChanged | ListCreated | ListsShown | ListShown
    | NoLists | ListNotFound | ListModified | ListDeleted
)


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------


class MessageComposer:
    """Generates Tama's wording, falling back to fixed text on any LLM failure."""

    def __init__(self, complete: CompleteFn | None = None) -> None:
        self._complete = complete or llm.complete

    async def _generate(
        self,
        instructions: str,
        prompt: str,
        fallback: str,
        max_tokens: int = 150,
        history: Sequence[ConversationMessage] = (),
    ) -> str:
        try:
            text = await self._complete(
                system=f"{TAMA_PERSONA}\n{instructions}",
                user_message=prompt,
                max_tokens=max_tokens,
                history=history,
            )
        except Exception as exc:
            logger.warning("LLM generation failed, using fallback: %s", exc)
            return fallback
        text = (text or "").strip()
        return text or fallback

    async def acknowledge(
        self, context: ActionContext, history: Sequence[ConversationMessage] = (),
    ) -> str:
        return await self._generate(
            _ACK_INSTRUCTIONS, context.prompt(), context.fallback(), max_tokens=300, history=history,
        )

    # -- campaign texts ------------------------------------------------

    async def reminder(self, task_content: str) -> str:
        return await self._generate(
            "Generate the initial reminder for a task, at the time the user asked for it. "
            "1-2 short sentences, a soft nudge rather than a command.",
            f'Send a reminder about: "{task_content}"',
            f"Just a soft reminder about: {task_content}",
            max_tokens=100,
        )

    async def nag(self, task_content: str, level: int) -> str:
        style = _NAG_STYLES[min(max(level, 0), 4)]
        return await self._generate(
            f"Generate a soft reminder message for a task. {style} "
            "Keep it to 1-2 short sentences. Never shame or pressure.",
            f"Remind me about: {task_content}",
            f"This came up again: {task_content}. Whenever you're ready.",
        )

    async def final_nag(self, task_content: str) -> str:
        return await self._generate(
            "Generate the final reminder for a task. After this you won't remind them again. "
            "Keep it warm and pressure-free; the task stays on their list.",
            f'Send the final reminder about: "{task_content}"',
            f"Last gentle nudge about {task_content}. It's still in your list whenever you're ready.",
            max_tokens=100,
        )

    async def follow_up(self, task_content: str) -> str:
        return await self._generate(
            "Generate a very brief follow-up to a reminder sent a few minutes ago. "
            "One short sentence; don't repeat the task details.",
            f'I sent a reminder about "{task_content}" a few minutes ago but haven\'t heard back.',
            "Just checking this reached you.",
            max_tokens=60,
        )

    async def checkin_prompt(self) -> str:
        return await self._generate(
            "Generate a soft daily check-in asking the user to rate how their day felt from 1-5, "
            "notes optional. 1-2 sentences, curiosity not obligation.",
            "Generate a daily check-in prompt.",
            "Hey. Quick check-in if you want: on a scale of 1-5, how did today feel? Notes are optional.",
        )

    async def end_of_day(self) -> str:
        return await self._generate(
            "Generate a gentle end-of-day message. Ask if there's anything to remember for tomorrow "
            "and wish them a good night. 2-3 cozy sentences.",
            "Generate an end-of-day message.",
            "Hey, before you drift off: anything you want to remember for tomorrow? Sleep well.",
        )

    async def weekly_insights(
        self, checkins: Sequence[CheckIn], dumps: Sequence[BrainDump], completed_count: int,
    ) -> str:
        avg = f"{sum(c.rating for c in checkins) / len(checkins):.1f}" if checkins else "N/A"
        fallback = (
            f"Weekly Summary\n\nCheck-ins: {len(checkins)}/7 days\n"
            f"Average rating: {avg}\nTasks completed: {completed_count}"
        )

        checkin_lines = "\n".join(
            f"- {datetime.fromisoformat(c.date).strftime('%A')}: {c.rating}/5"
            + (f' - "{c.notes}"' if c.notes else "")
            for c in checkins
        ) or "No check-ins this week."
        dump_lines = "\n".join(f"- {d.content}" for d in dumps) or "No brain dumps this week."
        prompt = (
            f"Here's my week:\n\nDaily check-ins (1-5):\n{checkin_lines}\n\n"
            f"Average rating: {avg}\nTasks completed: {completed_count}\n"
            f"Brain dumps:\n{dump_lines}\n\nShare any patterns you notice, gently."
        )

        text = await self._generate(
            "Create a gentle weekly reflection. Notice patterns without judgment; frame suggestions "
            "as options. Never imply the user should have done more. Warm and concise.",
            prompt,
            fallback,
            max_tokens=600,
        )
        return text if text == fallback else f"Weekly Summary\n\n{text}"

    async def morning_review(self, review: MorningReview) -> str:
        return await self._generate(
            "Generate a gentle good-morning overview of the day. Mention what's planned, anything "
            "waiting in the inbox, and anything overdue without guilt. Bullet points are fine.",
            review.describe(),
            review.fallback(),
            max_tokens=400,
        )
