"""
Tama Assistant — UI-Agnostic Action Service.

Orchestrates everything a user message can trigger:
register chat -> suppress follow-up -> classify -> run one handler per
intent -> compose the reply -> remember the exchange.

Each UI adapter (Telegram today) calls this service and sends the
returned text; the service never talks to the transport itself.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

from tama.core import intents as intent_models
from tama.core.composer import (
    BrainDumpSaved,
    CheckinLogged,
    InboxItemAdded,
    ListCreated,
    ListDeleted,
    ListModified,
    ListNotFound,
    ListShown,
    ListsShown,
    MultipleRemindersCreated,
    NoLists,
    NoTasks,
    ReminderCreated,
    ReminderWithListCreated,
    ScheduleChanged,
    TaskCancelled,
    TaskCompleted,
    TaskListing,
    TaskNotFound,
    TasksCancelled,
)
from tama.core.intents import INTENT_TYPES, FALLBACK_RESPONSE
from tama.core.time_normalizer import (
    describe_task_time,
    format_day_label,
    format_relative_duration,
    format_time_of_day,
)
from tama.data.models import CampaignPhase, ConversationMessage, Task

if TYPE_CHECKING:
    from tama.core.campaign import CampaignEngine
    from tama.core.composer import ActionContext, MessageComposer
    from tama.core.preferences import PreferenceCoordinator, ReconcileResult
    from tama.data.db import ConversationDB, ListDB, TaskDB

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


class ResponseKind(Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    SOFT_ERROR = "soft_error"
    CONVERSATION = "conversation"


@dataclass
class ServiceResponse:
    kind: ResponseKind
    message: str


ClassifyFn = Callable[..., Awaitable[list]]


class ActionService:
    """Stateless service that turns intents into store and campaign changes.

    Returns ServiceResponse objects — never sends messages directly.
    """

    def __init__(
        self,
        tasks: TaskDB,
        lists: ListDB,
        conversations: ConversationDB,
        campaign: CampaignEngine,
        preferences: PreferenceCoordinator,
        composer: MessageComposer,
        classify: ClassifyFn | None = None,
        timezone: str | None = None,
    ) -> None:
        if timezone is None:
            from tama.config import settings
            timezone = settings.TIMEZONE

        self._tasks = tasks
        self._lists = lists
        self._conversations = conversations
        self._campaign = campaign
        self._preferences = preferences
        self._composer = composer
        self._classify = classify or intent_models.classify
        self._tz = timezone

        self._handlers = {
            "reminder": self._handle_reminder,
            "multiple_reminders": self._handle_multiple_reminders,
            "reminder_with_list": self._handle_reminder_with_list,
            "brain_dump": self._handle_brain_dump,
            "inbox": self._handle_inbox,
            "mark_done": self._handle_mark_done,
            "cancel_task": self._handle_cancel_task,
            "cancel_multiple_tasks": self._handle_cancel_multiple_tasks,
            "list_tasks": self._handle_list_tasks,
            "create_list": self._handle_create_list,
            "show_lists": self._handle_show_lists,
            "show_list": self._handle_show_list,
            "modify_list": self._handle_modify_list,
            "delete_list": self._handle_delete_list,
            "checkin_response": self._handle_checkin_response,
            "set_checkin_time": self._handle_set_checkin_time,
            "set_morning_review_time": self._handle_set_morning_review_time,
            "conversation": self._handle_conversation,
        }
        missing = INTENT_TYPES - self._handlers.keys()
        extra = self._handlers.keys() - INTENT_TYPES
        if missing or extra:
            raise RuntimeError(f"Intent handler table out of sync: missing={sorted(missing)} extra={sorted(extra)}")

    # ------------------------------------------------------------------
    # Public: process free-text
    # ------------------------------------------------------------------

    async def process_text(self, chat_id: int, text: str) -> ServiceResponse:
        """Classify a message and execute every intent it contains."""
        await self.register_chat(chat_id)
        await self.acknowledge_user_activity(chat_id)

        history, awaiting = await asyncio.gather(
            self._conversations.get_conversation_history(chat_id),
            self._conversations.is_awaiting_checkin(chat_id),
        )
        intents = await self._classify(text, history, awaiting)

        responses = [await self._dispatch(chat_id, intent, history) for intent in intents]
        response = self._merge(responses)

        await self._conversations.add_to_conversation(chat_id, text, response.message)
        return response

    async def register_chat(self, chat_id: int) -> None:
        """Record the chat and make sure its default recurring campaigns exist.

        Runs on every message so a chat whose first install failed is retried.
        """
        if await self._conversations.register_chat(chat_id):
            logger.info("First contact from chat %d", chat_id)
        await self._preferences.ensure_defaults(chat_id)

    async def acknowledge_user_activity(self, chat_id: int) -> None:
        """Any inbound message counts as a reply to the last reminder."""
        await self._campaign.suppress_follow_up(chat_id)

    async def _dispatch(
        self, chat_id: int, intent: object, history: Sequence[ConversationMessage],
    ) -> ServiceResponse:
        handler = self._handlers[intent.type]
        logger.info("Chat %d: handling %s", chat_id, intent.type)
        return await handler(chat_id, intent, history)

    @staticmethod
    def _merge(responses: list[ServiceResponse]) -> ServiceResponse:
        if len(responses) == 1:
            return responses[0]
        kinds = {r.kind for r in responses}
        kind = next(
            (k for k in (ResponseKind.SOFT_ERROR, ResponseKind.NOT_FOUND) if k in kinds),
            responses[0].kind,
        )
        return ServiceResponse(kind=kind, message="\n\n".join(r.message for r in responses))

    async def _reply(
        self,
        context: ActionContext,
        history: Sequence[ConversationMessage],
        kind: ResponseKind = ResponseKind.SUCCESS,
    ) -> ServiceResponse:
        return ServiceResponse(kind=kind, message=await self._composer.acknowledge(context, history))

    def _when(self, task: Task, delay_minutes: int) -> str:
        if task.is_day_only:
            return format_day_label(task.next_reminder, self._tz)
        return format_relative_duration(delay_minutes)

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def _create_reminder(self, chat_id: int, item: intent_models.ReminderItem) -> Task:
        task = await self._tasks.create_task(
            chat_id, item.task, item.is_important, item.delay_minutes, item.is_day_only,
        )
        return await self._campaign.start(task, item.delay_minutes)

    async def _handle_reminder(self, chat_id, intent, history) -> ServiceResponse:
        task = await self._create_reminder(chat_id, intent)
        context = ReminderCreated(
            task=task.content,
            time_str=self._when(task, intent.delay_minutes),
            is_important=task.is_important,
            is_day_only=task.is_day_only,
            scheduled=task.phase != CampaignPhase.UNSCHEDULED,
        )
        kind = ResponseKind.SUCCESS if context.scheduled else ResponseKind.SOFT_ERROR
        return await self._reply(context, history, kind)

    async def _handle_multiple_reminders(self, chat_id, intent, history) -> ServiceResponse:
        created: list[tuple[str, str]] = []
        unscheduled = False
        for item in intent.reminders:
            task = await self._create_reminder(chat_id, item)
            created.append((task.content, self._when(task, item.delay_minutes)))
            unscheduled = unscheduled or task.phase == CampaignPhase.UNSCHEDULED
        kind = ResponseKind.SOFT_ERROR if unscheduled else ResponseKind.SUCCESS
        return await self._reply(MultipleRemindersCreated(reminders=created), history, kind)

    async def _handle_reminder_with_list(self, chat_id, intent, history) -> ServiceResponse:
        task = await self._tasks.create_task(
            chat_id, intent.task, intent.is_important, intent.delay_minutes, intent.is_day_only,
        )
        task_list = await self._lists.create_list(
            chat_id, intent.list_name, intent.items, linked_task_id=task.id,
        )
        task.linked_list_id = task_list.id
        await self._tasks.update_task(task)
        task = await self._campaign.start(task, intent.delay_minutes)

        context = ReminderWithListCreated(
            task=task.content,
            time_str=self._when(task, intent.delay_minutes),
            list_name=task_list.name,
            item_count=len(task_list.items),
            is_important=task.is_important,
        )
        return await self._reply(context, history)

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def _handle_brain_dump(self, chat_id, intent, history) -> ServiceResponse:
        await self._conversations.create_brain_dump(chat_id, intent.content)
        return await self._reply(BrainDumpSaved(content=intent.content), history)

    async def _handle_inbox(self, chat_id, intent, history) -> ServiceResponse:
        await self._lists.add_inbox_item(chat_id, intent.item)
        return await self._reply(InboxItemAdded(item=intent.item), history)

    # ------------------------------------------------------------------
    # Completion and cancellation
    # ------------------------------------------------------------------

    async def _handle_mark_done(self, chat_id, intent, history) -> ServiceResponse:
        task = await self._tasks.find_task_by_description(chat_id, intent.task_description)
        if task is None:
            return await self._reply(TaskNotFound(action="done"), history, ResponseKind.NOT_FOUND)

        await self._campaign.stop(task)
        list_name = None
        if task.linked_list_id:
            completed_list = await self._lists.complete_list(chat_id, task.linked_list_id)
            list_name = completed_list.name if completed_list else None
        await self._tasks.complete_task(chat_id, task.id)

        return await self._reply(TaskCompleted(task=task.content, list_name=list_name), history)

    async def _cancel(self, chat_id: int, task: Task) -> None:
        await self._campaign.stop(task)
        if task.linked_list_id:
            await self._lists.unlink_task(chat_id, task.linked_list_id)
        await self._tasks.delete_task(chat_id, task.id)

    async def _handle_cancel_task(self, chat_id, intent, history) -> ServiceResponse:
        task = await self._tasks.find_task_by_description(chat_id, intent.task_description)
        if task is None:
            return await self._reply(TaskNotFound(action="cancel"), history, ResponseKind.NOT_FOUND)
        await self._cancel(chat_id, task)
        return await self._reply(TaskCancelled(task=task.content), history)

    async def _handle_cancel_multiple_tasks(self, chat_id, intent, history) -> ServiceResponse:
        tasks = await self._tasks.find_tasks_by_descriptions(chat_id, intent.task_descriptions)
        if not tasks:
            return await self._reply(TaskNotFound(action="cancel"), history, ResponseKind.NOT_FOUND)
        for task in tasks:
            await self._cancel(chat_id, task)
        return await self._reply(TasksCancelled(tasks=[t.content for t in tasks]), history)

    async def _handle_list_tasks(self, chat_id, intent, history) -> ServiceResponse:
        tasks = await self._tasks.get_pending_tasks(chat_id)
        if not tasks:
            return await self._reply(NoTasks(), history)
        lines = [
            f"{t.content} ({describe_task_time(t, self._tz)})" + (" ⚡" if t.is_important else "")
            for t in tasks
        ]
        return await self._reply(TaskListing(lines=lines), history)

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    async def _handle_create_list(self, chat_id, intent, history) -> ServiceResponse:
        task_list = await self._lists.create_list(chat_id, intent.name, intent.items)
        return await self._reply(ListCreated(name=task_list.name, item_count=len(task_list.items)), history)

    async def _handle_show_lists(self, chat_id, intent, history) -> ServiceResponse:
        lists = await self._lists.get_active_lists(chat_id)
        if not lists:
            return await self._reply(NoLists(), history)
        summary = [(lst.name, lst.checked_count, len(lst.items)) for lst in lists]
        return await self._reply(ListsShown(lists=summary), history)

    async def _handle_show_list(self, chat_id, intent, history) -> ServiceResponse:
        task_list = await self._lists.find_list_by_description(chat_id, intent.list_description)
        if task_list is None:
            return await self._reply(ListNotFound(), history, ResponseKind.NOT_FOUND)

        linked_task = linked_time = None
        if task_list.linked_task_id:
            task = await self._tasks.get_task(chat_id, task_list.linked_task_id)
            if task is not None and task.is_pending:
                linked_task = task.content
                linked_time = describe_task_time(task, self._tz)

        context = ListShown(
            name=task_list.name,
            items=[(item.content, item.is_checked) for item in task_list.items],
            linked_task=linked_task,
            linked_task_time=linked_time,
        )
        return await self._reply(context, history)

    async def _handle_modify_list(self, chat_id, intent, history) -> ServiceResponse:
        task_list = await self._lists.find_list_by_description(chat_id, intent.list_description)
        if task_list is None:
            return await self._reply(ListNotFound(), history, ResponseKind.NOT_FOUND)

        old_name = task_list.name
        if intent.action == "rename":
            if not intent.new_name:
                return ServiceResponse(
                    kind=ResponseKind.NOT_FOUND,
                    message=f"What should I rename {old_name} to?",
                )
            await self._lists.rename_list(task_list, intent.new_name)
            changed: list[str] = []
        elif intent.action == "add_items":
            changed = await self._lists.add_list_items(task_list, intent.items)
        elif intent.action == "remove_items":
            changed = await self._lists.remove_list_items(task_list, intent.items)
        elif intent.action == "check_items":
            changed = await self._lists.check_list_items(task_list, intent.items)
        else:
            changed = await self._lists.uncheck_list_items(task_list, intent.items)

        context = ListModified(name=old_name, action=intent.action, items=changed, new_name=intent.new_name)
        return await self._reply(context, history)

    async def _handle_delete_list(self, chat_id, intent, history) -> ServiceResponse:
        task_list = await self._lists.find_list_by_description(chat_id, intent.list_description)
        if task_list is None:
            return await self._reply(ListNotFound(), history, ResponseKind.NOT_FOUND)
        await self._lists.delete_list(chat_id, task_list.id, task_db=self._tasks)
        return await self._reply(ListDeleted(name=task_list.name), history)

    # ------------------------------------------------------------------
    # Check-ins and preferences
    # ------------------------------------------------------------------

    async def _handle_checkin_response(self, chat_id, intent, history) -> ServiceResponse:
        await self._conversations.save_checkin(chat_id, intent.rating, intent.notes)
        await self._conversations.clear_awaiting_checkin(chat_id)
        return await self._reply(CheckinLogged(rating=intent.rating, has_notes=bool(intent.notes)), history)

    async def _schedule_reply(
        self, what: str, intent, result: ReconcileResult, history,
    ) -> ServiceResponse:
        context = ScheduleChanged(
            what=what,
            time_str=format_time_of_day(intent.hour, intent.minute),
            failed=[kind.replace("_", " ") for kind in result.failed],
        )
        kind = ResponseKind.SUCCESS if result.ok else ResponseKind.SOFT_ERROR
        return await self._reply(context, history, kind)

    async def _handle_set_checkin_time(self, chat_id, intent, history) -> ServiceResponse:
        result = await self._preferences.set_checkin_time(chat_id, intent.hour, intent.minute)
        return await self._schedule_reply("check-in", intent, result, history)

    async def _handle_set_morning_review_time(self, chat_id, intent, history) -> ServiceResponse:
        result = await self._preferences.set_morning_review_time(chat_id, intent.hour, intent.minute)
        return await self._schedule_reply("morning review", intent, result, history)

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def _handle_conversation(self, chat_id, intent, history) -> ServiceResponse:
        return ServiceResponse(
            kind=ResponseKind.CONVERSATION,
            message=intent.response.strip() or FALLBACK_RESPONSE,
        )
