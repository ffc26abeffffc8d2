"""
Tama Assistant — Intent Classifier.

Converts a free-form message (typed or transcribed) into one or more
structured intents using the configured LLM provider.

The intent set is closed: a pydantic union discriminated by `type`. Anything
the model returns outside that set, or anything that fails to validate, is
dropped; if nothing survives the user gets a gentle conversational reply.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Annotated, Literal, Sequence, Union, get_args
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from tama.core.composer import TAMA_PERSONA
from tama.core.llm import complete
from tama.data.models import ConversationMessage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Intent models (wire format is camelCase JSON)
# ---------------------------------------------------------------------------


class _IntentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReminderItem(_IntentModel):
    task: str
    delay_minutes: int = 60
    is_important: bool = False
    is_day_only: bool = False


class ReminderIntent(ReminderItem):
    """{"type": "reminder", "task": "call mom", "delayMinutes": 120, "isImportant": false}"""
    type: Literal["reminder"] = "reminder"


class MultipleRemindersIntent(_IntentModel):
    type: Literal["multiple_reminders"] = "multiple_reminders"
    reminders: list[ReminderItem]


class ReminderWithListIntent(ReminderItem):
    """A reminder that carries a checklist, e.g. groceries to buy at 5pm."""
    type: Literal["reminder_with_list"] = "reminder_with_list"
    list_name: str
    items: list[str] = []


class BrainDumpIntent(_IntentModel):
    type: Literal["brain_dump"] = "brain_dump"
    content: str


class InboxIntent(_IntentModel):
    type: Literal["inbox"] = "inbox"
    item: str


class MarkDoneIntent(_IntentModel):
    type: Literal["mark_done"] = "mark_done"
    task_description: str | None = None


class CancelTaskIntent(_IntentModel):
    type: Literal["cancel_task"] = "cancel_task"
    task_description: str | None = None


class CancelMultipleTasksIntent(_IntentModel):
    type: Literal["cancel_multiple_tasks"] = "cancel_multiple_tasks"
    task_descriptions: list[str]


class ListTasksIntent(_IntentModel):
    type: Literal["list_tasks"] = "list_tasks"


class CreateListIntent(_IntentModel):
    type: Literal["create_list"] = "create_list"
    name: str
    items: list[str] = []


class ShowListsIntent(_IntentModel):
    type: Literal["show_lists"] = "show_lists"


class ShowListIntent(_IntentModel):
    type: Literal["show_list"] = "show_list"
    list_description: str | None = None


ListAction = Literal["add_items", "remove_items", "check_items", "uncheck_items", "rename"]


class ModifyListIntent(_IntentModel):
    type: Literal["modify_list"] = "modify_list"
    list_description: str | None = None
    action: ListAction
    items: list[str] = []
    new_name: str | None = None


class DeleteListIntent(_IntentModel):
    type: Literal["delete_list"] = "delete_list"
    list_description: str | None = None


class CheckinResponseIntent(_IntentModel):
    type: Literal["checkin_response"] = "checkin_response"
    rating: int = Field(ge=1, le=5)
    notes: str | None = None


class SetCheckinTimeIntent(_IntentModel):
    type: Literal["set_checkin_time"] = "set_checkin_time"
    hour: int = Field(ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)


class SetMorningReviewTimeIntent(_IntentModel):
    type: Literal["set_morning_review_time"] = "set_morning_review_time"
    hour: int = Field(ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)


class ConversationIntent(_IntentModel):
    type: Literal["conversation"] = "conversation"
    response: str = ""


_IntentUnion = Union[
    ReminderIntent,
    MultipleRemindersIntent,
    ReminderWithListIntent,
    BrainDumpIntent,
    InboxIntent,
    MarkDoneIntent,
    CancelTaskIntent,
    CancelMultipleTasksIntent,
    ListTasksIntent,
    CreateListIntent,
    ShowListsIntent,
    ShowListIntent,
    ModifyListIntent,
    DeleteListIntent,
    CheckinResponseIntent,
    SetCheckinTimeIntent,
    SetMorningReviewTimeIntent,
    ConversationIntent,
]

Intent = Annotated[_IntentUnion, Field(discriminator="type")]

INTENT_MODELS: tuple[type[BaseModel], ...] = get_args(_IntentUnion)
INTENT_TYPES: frozenset[str] = frozenset(m.model_fields["type"].default for m in INTENT_MODELS)

_intent_adapter: TypeAdapter[Intent] = TypeAdapter(Intent)

FALLBACK_RESPONSE = (
    "Hmm, I didn't quite catch that. Could you say it another way? "
    "I can help with reminders, hold onto thoughts for you, or mark things done."
)


# ---------------------------------------------------------------------------
# System prompt for LLM
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
{persona}

---

You are integrated into a Telegram bot. Your job is to parse the user's message and determine their intent.
CURRENT TIME: {now} (timezone: {timezone})

CRITICAL: respond with valid JSON only. No markdown, no explanation.
Return one JSON object, or a JSON array of objects when the message contains several unrelated requests.
Earlier assistant messages in the history are context only; never mimic their format.

TIME HANDLING:
- Relative times ("in 2 hours", "in 30 min") convert directly to delayMinutes.
- Absolute times ("at 3pm") become the minutes from now until that time; if it already passed today, assume tomorrow.
- If the user names a day but no time ("on Tuesday", "tomorrow"), set isDayOnly to true and give a rough delayMinutes that lands on that day.

Intents and formats:
- reminder: {{"type": "reminder", "task": "description", "delayMinutes": number, "isImportant": boolean, "isDayOnly": boolean}}
  isImportant is true for "important", "urgent", "nag me", "keep reminding", "don't let me forget".
- multiple_reminders: {{"type": "multiple_reminders", "reminders": [{{"task": "...", "delayMinutes": number, "isImportant": boolean, "isDayOnly": boolean}}]}}
  Two or more tasks in one message. Default delayMinutes is 60 when no time is given.
- reminder_with_list: {{"type": "reminder_with_list", "task": "buy groceries", "listName": "Groceries", "items": ["bread", "eggs"], "delayMinutes": number, "isImportant": boolean, "isDayOnly": boolean}}
- brain_dump: {{"type": "brain_dump", "content": "the captured thought"}}
  Random thoughts or ideas without a clear action.
- inbox: {{"type": "inbox", "item": "something to do someday"}}
  Things to do without a time ("I need to renew my passport at some point").
- mark_done: {{"type": "mark_done", "taskDescription": "optional description"}}
- cancel_task: {{"type": "cancel_task", "taskDescription": "optional description"}}
- cancel_multiple_tasks: {{"type": "cancel_multiple_tasks", "taskDescriptions": ["...", "..."]}}
- list_tasks: {{"type": "list_tasks"}}
- create_list: {{"type": "create_list", "name": "list name", "items": ["item1", "item2"]}}
- show_lists: {{"type": "show_lists"}}
- show_list: {{"type": "show_list", "listDescription": "optional"}}
- modify_list: {{"type": "modify_list", "listDescription": "optional", "action": "add_items|remove_items|check_items|uncheck_items|rename", "items": ["item"], "newName": "optional"}}
- delete_list: {{"type": "delete_list", "listDescription": "optional"}}
- checkin_response: {{"type": "checkin_response", "rating": 1-5, "notes": "optional"}}
- set_checkin_time: {{"type": "set_checkin_time", "hour": 0-23, "minute": 0-59}}
- set_morning_review_time: {{"type": "set_morning_review_time", "hour": 0-23, "minute": 0-59}}
- conversation: {{"type": "conversation", "response": "your reply in Tama's voice"}}
  General chat or unclear intent; gently ask a clarifying question if needed.

Be lenient: messages may be fragmented or unclear. Try to understand what the user means.
"""

_AWAITING_CHECKIN_NOTE = (
    "[context: the bot just asked the user to rate their day 1-5; "
    "this message is likely a check-in response]\n"
)

_JSON_RE = re.compile(r"(\[.*\]|\{.*\})", re.DOTALL)


# ---------------------------------------------------------------------------
# Response Cleaning Functions
# ---------------------------------------------------------------------------

def _clean_llm_response(raw_text: str) -> str:
    """Remove markdown code fences and any prose around the JSON payload."""
    cleaned_text = raw_text.strip()
    if cleaned_text.startswith("```"):
        cleaned_text = cleaned_text.removeprefix("```json").removeprefix("```")
    if cleaned_text.endswith("```"):
        cleaned_text = cleaned_text.removesuffix("```")
    cleaned_text = cleaned_text.strip()

    match = _JSON_RE.search(cleaned_text)
    return match.group(1) if match else cleaned_text


def _instantiate_intents(data: object) -> list[Intent]:
    """Validate each item independently; invalid items are logged and dropped."""
    items = data if isinstance(data, list) else [data]
    results: list[Intent] = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning("Skipping non-object intent: %r", item)
            continue
        try:
            intent = _intent_adapter.validate_python(item)
        except ValidationError as exc:
            logger.warning("Dropping invalid intent %s: %s", item.get("type"), exc.errors()[:1])
            continue
        logger.info("Parsed intent: %s", intent.type)
        results.append(intent)
    return results


def _fallback() -> list[Intent]:
    return [ConversationIntent(response=FALLBACK_RESPONSE)]


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


async def classify(
    text: str,
    history: Sequence[ConversationMessage] = (),
    awaiting_checkin: bool = False,
    timezone: str | None = None,
) -> list[Intent]:
    """Classify a user message into one or more intents.

    Never raises: LLM failures, timeouts and malformed output all collapse
    into a single ConversationIntent.
    """
    if timezone is None:
        from tama.config import settings
        timezone = settings.TIMEZONE

    now = datetime.now(ZoneInfo(timezone)).strftime("%A, %B %d, %Y %I:%M %p")
    system_prompt = _SYSTEM_PROMPT.format(persona=TAMA_PERSONA, now=now, timezone=timezone)
    user_message = (_AWAITING_CHECKIN_NOTE if awaiting_checkin else "") + text

    raw_text = ""
    try:
        raw_text = await complete(
            system=system_prompt,
            user_message=user_message,
            max_tokens=500,
            history=history,
        )
        raw_text = _clean_llm_response(raw_text or "")
        logger.debug("LLM raw intent response: %s", raw_text)
        data = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse LLM response as JSON: %s — raw: '%s'", exc, raw_text)
        return _fallback()
    except Exception as exc:
        logger.error("Intent classification failed: %s", exc)
        return _fallback()

    return _instantiate_intents(data) or _fallback()
