"""
Tama Assistant — Task, List and Conversation storage.

The Memory pillar: every record is JSON in the key-value store. Records and
their secondary indexes are written as separate keys with no transaction,
so every reader skips index entries whose record has disappeared.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Any

from tama.core.matching import descriptions_match, find_first_match
from tama.core.time_normalizer import (
    compute_next_reminder,
    local_date_key,
    local_day_bounds,
    utcnow,
)
from tama.data.models import (
    BrainDump,
    CampaignPhase,
    CheckIn,
    ConversationMessage,
    ListItem,
    ListStatus,
    PendingFollowUp,
    Task,
    TaskList,
    TaskStatus,
    UserPreferences,
)
from tama.ports.store_port import KeyValueStore

logger = logging.getLogger(__name__)

_DAY_SECONDS = 24 * 60 * 60

FOLLOW_UP_TTL = 30 * 60
AWAITING_CHECKIN_TTL = 60 * 60
DUMP_TTL = 30 * _DAY_SECONDS
CHECKIN_TTL = 90 * _DAY_SECONDS
COMPLETED_COUNTER_TTL = 8 * _DAY_SECONDS
CONVERSATION_TTL = _DAY_SECONDS
MAX_CONVERSATION_EXCHANGES = 10

INBOX_LIST_NAME = "Inbox"

# Key patterns
TASK_KEY = "task:{chat_id}:{task_id}"
TASKS_SET_KEY = "tasks:{chat_id}"
LIST_KEY = "list:{chat_id}:{list_id}"
LISTS_SET_KEY = "lists:{chat_id}"
INBOX_KEY = "inbox:{chat_id}"
PREFS_KEY = "prefs:{chat_id}"
AWAITING_CHECKIN_KEY = "awaiting_checkin:{chat_id}"
FOLLOW_UP_KEY = "followup:{chat_id}"
CHECKIN_KEY = "checkin:{chat_id}:{date}"
DUMP_KEY = "dump:{chat_id}:{dump_id}"
DUMPS_SET_KEY = "dumps:{chat_id}:{date}"
COMPLETED_KEY = "completed:{chat_id}:{date}"
CONVERSATION_KEY = "conversation:{chat_id}"
ACTIVE_CHATS_KEY = "active_chats"


def generate_id() -> str:
    """Time-prefixed random id: sortable by creation, unique across invocations."""
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Not JSON serializable: {type(value).__name__}")


def _dumps(record: Any) -> str:
    return json.dumps(asdict(record), default=_json_default)


def _loads(raw: str | None) -> dict | None:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Skipping unreadable record: %s", exc)
        return None


def _last_days(tz: str, days: int, now: datetime | None = None) -> list[str]:
    now = now or utcnow()
    return [local_date_key(tz, now - timedelta(days=n)) for n in range(days)]


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskDB:
    """Key-value storage for tasks and the per-chat pending index."""

    def __init__(self, store: KeyValueStore, timezone: str | None = None) -> None:
        if timezone is None:
            from tama.config import settings
            timezone = settings.TIMEZONE

        self._store = store
        self._tz = timezone

    @staticmethod
    def _row_to_task(data: dict) -> Task:
        return Task(
            id=data["id"],
            chat_id=int(data["chat_id"]),
            content=data["content"],
            is_important=bool(data.get("is_important", False)),
            is_day_only=bool(data.get("is_day_only", False)),
            nagging_level=int(data.get("nagging_level", 0)),
            next_reminder=_dt(data["next_reminder"]),
            qstash_message_id=data.get("qstash_message_id"),
            linked_list_id=data.get("linked_list_id"),
            status=TaskStatus(data.get("status", "pending")),
            phase=CampaignPhase(data.get("phase", CampaignPhase.UNSCHEDULED.value)),
            created_at=_dt(data["created_at"]),
        )

    async def create_task(
        self,
        chat_id: int,
        content: str,
        is_important: bool,
        delay_minutes: int,
        is_day_only: bool = False,
    ) -> Task:
        """Insert a pending task. The campaign is attached separately."""
        now = utcnow()
        task = Task(
            id=generate_id(),
            chat_id=chat_id,
            content=content,
            is_important=is_important,
            is_day_only=is_day_only,
            next_reminder=compute_next_reminder(delay_minutes, is_day_only, self._tz, now),
            created_at=now,
            phase=CampaignPhase.DAY_ONLY if is_day_only else CampaignPhase.UNSCHEDULED,
        )
        await self._store.set(TASK_KEY.format(chat_id=chat_id, task_id=task.id), _dumps(task))
        await self._store.sadd(TASKS_SET_KEY.format(chat_id=chat_id), task.id)
        logger.info(
            "Task created: %s '%s' (important=%s, day_only=%s)",
            task.id, content, is_important, is_day_only,
        )
        return task

    async def get_task(self, chat_id: int, task_id: str) -> Task | None:
        data = _loads(await self._store.get(TASK_KEY.format(chat_id=chat_id, task_id=task_id)))
        if data is None:
            return None
        return self._row_to_task(data)

    async def update_task(self, task: Task) -> None:
        await self._store.set(
            TASK_KEY.format(chat_id=task.chat_id, task_id=task.id), _dumps(task),
        )

    async def complete_task(self, chat_id: int, task_id: str) -> Task | None:
        """Mark a task completed and count it towards today's total."""
        task = await self.get_task(chat_id, task_id)
        if task is None:
            return None

        task.status = TaskStatus.COMPLETED
        task.phase = CampaignPhase.CLOSED
        task.qstash_message_id = None
        await self.update_task(task)
        await self._store.srem(TASKS_SET_KEY.format(chat_id=chat_id), task_id)

        counter_key = COMPLETED_KEY.format(chat_id=chat_id, date=local_date_key(self._tz))
        await self._store.incr(counter_key)
        await self._store.expire(counter_key, COMPLETED_COUNTER_TTL)

        logger.info("Task %s '%s' completed", task_id, task.content)
        return task

    async def delete_task(self, chat_id: int, task_id: str) -> None:
        """Hard delete: the record and its index entry."""
        await self._store.delete(TASK_KEY.format(chat_id=chat_id, task_id=task_id))
        await self._store.srem(TASKS_SET_KEY.format(chat_id=chat_id), task_id)
        logger.info("Task %s deleted", task_id)

    async def get_pending_tasks(self, chat_id: int) -> list[Task]:
        """All pending tasks, soonest next_reminder first."""
        task_ids = await self._store.smembers(TASKS_SET_KEY.format(chat_id=chat_id))
        tasks: list[Task] = []
        for task_id in task_ids:
            task = await self.get_task(chat_id, task_id)
            if task is not None and task.is_pending:
                tasks.append(task)
        tasks.sort(key=lambda t: t.next_reminder)
        return tasks

    async def find_task_by_description(
        self, chat_id: int, description: str | None = None,
    ) -> Task | None:
        """Best-effort lookup: a fuzzy match, else the last pending task.

        Returns None only when nothing is pending. The fallback is a guess,
        so callers should echo the task they acted on.
        """
        tasks = await self.get_pending_tasks(chat_id)
        if not tasks:
            return None

        fallback = tasks[-1]
        if not description:
            return fallback

        matched = find_first_match(description, tasks, key=lambda t: t.content)
        if matched is None:
            logger.info("No task matched '%s', falling back to '%s'", description, fallback.content)
        return matched or fallback

    async def find_tasks_by_descriptions(
        self, chat_id: int, descriptions: list[str],
    ) -> list[Task]:
        """Union of fuzzy hits for every description, deduplicated by id."""
        tasks = await self.get_pending_tasks(chat_id)
        found: dict[str, Task] = {}
        for description in descriptions:
            for task in tasks:
                if task.id not in found and descriptions_match(description, task.content):
                    found[task.id] = task
        return list(found.values())

    async def get_overdue_tasks(self, chat_id: int) -> list[Task]:
        now = utcnow()
        return [t for t in await self.get_pending_tasks(chat_id) if t.next_reminder < now]

    async def get_todays_tasks(self, chat_id: int) -> list[Task]:
        """Pending tasks (day-only and timed) whose trigger falls on today's local date."""
        start, end = local_day_bounds(self._tz)
        return [
            t for t in await self.get_pending_tasks(chat_id)
            if start <= t.next_reminder < end
        ]

    async def get_weekly_completed_count(self, chat_id: int) -> int:
        total = 0
        for day in _last_days(self._tz, 7):
            raw = await self._store.get(COMPLETED_KEY.format(chat_id=chat_id, date=day))
            if raw:
                total += int(raw)
        return total


# ---------------------------------------------------------------------------
# Lists
# ---------------------------------------------------------------------------


class ListDB:
    """Key-value storage for checklists, including the per-chat Inbox."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @staticmethod
    def _row_to_list(data: dict) -> TaskList:
        return TaskList(
            id=data["id"],
            chat_id=int(data["chat_id"]),
            name=data["name"],
            items=[
                ListItem(
                    id=item["id"],
                    content=item["content"],
                    is_checked=bool(item.get("is_checked", False)),
                    created_at=_dt(item["created_at"]),
                )
                for item in data.get("items", [])
            ],
            linked_task_id=data.get("linked_task_id"),
            status=ListStatus(data.get("status", "active")),
            created_at=_dt(data["created_at"]),
            updated_at=_dt(data["updated_at"]),
        )

    @staticmethod
    def _new_items(contents: list[str]) -> list[ListItem]:
        now = utcnow()
        return [
            ListItem(id=generate_id(), content=c.strip(), created_at=now)
            for c in contents if c and c.strip()
        ]

    async def create_list(
        self,
        chat_id: int,
        name: str,
        items: list[str] | None = None,
        linked_task_id: str | None = None,
    ) -> TaskList:
        now = utcnow()
        task_list = TaskList(
            id=generate_id(),
            chat_id=chat_id,
            name=name.strip(),
            items=self._new_items(items or []),
            linked_task_id=linked_task_id,
            created_at=now,
            updated_at=now,
        )
        await self.update_list(task_list, touch=False)
        await self._store.sadd(LISTS_SET_KEY.format(chat_id=chat_id), task_list.id)
        logger.info("List created: %s '%s' with %d items", task_list.id, name, len(task_list.items))
        return task_list

    async def get_list(self, chat_id: int, list_id: str) -> TaskList | None:
        data = _loads(await self._store.get(LIST_KEY.format(chat_id=chat_id, list_id=list_id)))
        if data is None:
            return None
        return self._row_to_list(data)

    async def update_list(self, task_list: TaskList, touch: bool = True) -> None:
        if touch:
            task_list.updated_at = utcnow()
        await self._store.set(
            LIST_KEY.format(chat_id=task_list.chat_id, list_id=task_list.id),
            _dumps(task_list),
        )

    async def get_active_lists(self, chat_id: int) -> list[TaskList]:
        """Active lists, most recently updated last."""
        list_ids = await self._store.smembers(LISTS_SET_KEY.format(chat_id=chat_id))
        lists: list[TaskList] = []
        for list_id in list_ids:
            task_list = await self.get_list(chat_id, list_id)
            if task_list is not None and task_list.status == ListStatus.ACTIVE:
                lists.append(task_list)
        lists.sort(key=lambda lst: lst.updated_at)
        return lists

    async def find_list_by_description(
        self, chat_id: int, description: str | None = None,
    ) -> TaskList | None:
        """Same convention as tasks: fuzzy match on name, else the latest list."""
        lists = await self.get_active_lists(chat_id)
        if not lists:
            return None
        fallback = lists[-1]
        if not description:
            return fallback
        return find_first_match(description, lists, key=lambda lst: lst.name) or fallback

    async def add_list_items(self, task_list: TaskList, items: list[str]) -> list[str]:
        added = self._new_items(items)
        task_list.items.extend(added)
        await self.update_list(task_list)
        return [item.content for item in added]

    async def remove_list_items(self, task_list: TaskList, items: list[str]) -> list[str]:
        removed: list[str] = []
        for query in items:
            match = find_first_match(query, task_list.items, key=lambda i: i.content)
            if match is not None:
                task_list.items.remove(match)
                removed.append(match.content)
        await self.update_list(task_list)
        return removed

    async def _set_checked(
        self, task_list: TaskList, items: list[str], checked: bool,
    ) -> list[str]:
        changed: list[str] = []
        for query in items:
            candidates = [i for i in task_list.items if i.is_checked != checked]
            match = find_first_match(query, candidates, key=lambda i: i.content)
            if match is not None:
                match.is_checked = checked
                changed.append(match.content)
        await self.update_list(task_list)
        return changed

    async def check_list_items(self, task_list: TaskList, items: list[str]) -> list[str]:
        return await self._set_checked(task_list, items, True)

    async def uncheck_list_items(self, task_list: TaskList, items: list[str]) -> list[str]:
        return await self._set_checked(task_list, items, False)

    async def rename_list(self, task_list: TaskList, new_name: str) -> None:
        task_list.name = new_name.strip()
        await self.update_list(task_list)

    async def complete_list(self, chat_id: int, list_id: str) -> TaskList | None:
        task_list = await self.get_list(chat_id, list_id)
        if task_list is None:
            return None
        task_list.status = ListStatus.COMPLETED
        await self.update_list(task_list)
        logger.info("List %s '%s' completed", list_id, task_list.name)
        return task_list

    async def unlink_task(self, chat_id: int, list_id: str) -> None:
        """Clear the list's pointer to a task that is going away."""
        task_list = await self.get_list(chat_id, list_id)
        if task_list is not None and task_list.linked_task_id is not None:
            task_list.linked_task_id = None
            await self.update_list(task_list)

    async def delete_list(
        self, chat_id: int, list_id: str, task_db: TaskDB | None = None,
    ) -> None:
        """Hard delete. A linked task survives with its back-reference cleared."""
        task_list = await self.get_list(chat_id, list_id)
        if task_list is not None and task_list.linked_task_id and task_db is not None:
            task = await task_db.get_task(chat_id, task_list.linked_task_id)
            if task is not None and task.linked_list_id == list_id:
                task.linked_list_id = None
                await task_db.update_task(task)

        await self._store.delete(LIST_KEY.format(chat_id=chat_id, list_id=list_id))
        await self._store.srem(LISTS_SET_KEY.format(chat_id=chat_id), list_id)
        inbox_key = INBOX_KEY.format(chat_id=chat_id)
        if await self._store.get(inbox_key) == list_id:
            await self._store.delete(inbox_key)
        logger.info("List %s deleted", list_id)

    async def get_or_create_inbox(self, chat_id: int) -> TaskList:
        """The Inbox is an ordinary list created on first use."""
        inbox_key = INBOX_KEY.format(chat_id=chat_id)
        inbox_id = await self._store.get(inbox_key)
        if inbox_id:
            inbox = await self.get_list(chat_id, inbox_id)
            if inbox is not None and inbox.status == ListStatus.ACTIVE:
                return inbox

        inbox = await self.create_list(chat_id, INBOX_LIST_NAME)
        await self._store.set(inbox_key, inbox.id)
        return inbox

    async def add_inbox_item(self, chat_id: int, content: str) -> TaskList:
        inbox = await self.get_or_create_inbox(chat_id)
        await self.add_list_items(inbox, [content])
        return inbox

    async def get_unchecked_inbox_items(self, chat_id: int) -> list[ListItem]:
        inbox_id = await self._store.get(INBOX_KEY.format(chat_id=chat_id))
        if not inbox_id:
            return []
        inbox = await self.get_list(chat_id, inbox_id)
        if inbox is None:
            return []
        return [item for item in inbox.items if not item.is_checked]


# ---------------------------------------------------------------------------
# Conversation state: preferences, flags, follow-ups, check-ins, dumps
# ---------------------------------------------------------------------------


class ConversationDB:
    """Per-chat records that are not tasks or lists."""

    def __init__(self, store: KeyValueStore, timezone: str | None = None) -> None:
        if timezone is None:
            from tama.config import settings
            timezone = settings.TIMEZONE

        self._store = store
        self._tz = timezone

    # -- chats ---------------------------------------------------------

    async def register_chat(self, chat_id: int) -> bool:
        """Record the chat; True the first time it is seen."""
        is_new = await self._store.sadd(ACTIVE_CHATS_KEY, str(chat_id))
        if is_new:
            logger.info("New chat registered: %d", chat_id)
        return is_new

    async def get_active_chats(self) -> list[int]:
        return sorted(int(c) for c in await self._store.smembers(ACTIVE_CHATS_KEY))

    # -- preferences ---------------------------------------------------

    async def get_preferences(self, chat_id: int) -> UserPreferences | None:
        data = _loads(await self._store.get(PREFS_KEY.format(chat_id=chat_id)))
        if data is None:
            return None
        return UserPreferences(
            chat_id=int(data["chat_id"]),
            checkin_time=data.get("checkin_time", "20:00"),
            morning_review_time=data.get("morning_review_time", "08:00"),
            end_of_day_time=data.get("end_of_day_time", "21:30"),
            schedule_ids=dict(data.get("schedule_ids", {})),
        )

    async def save_preferences(self, prefs: UserPreferences) -> None:
        await self._store.set(PREFS_KEY.format(chat_id=prefs.chat_id), _dumps(prefs))

    # -- awaiting check-in flag ----------------------------------------

    async def mark_awaiting_checkin(self, chat_id: int) -> None:
        await self._store.set(
            AWAITING_CHECKIN_KEY.format(chat_id=chat_id), "1", ttl_seconds=AWAITING_CHECKIN_TTL,
        )

    async def is_awaiting_checkin(self, chat_id: int) -> bool:
        return await self._store.get(AWAITING_CHECKIN_KEY.format(chat_id=chat_id)) is not None

    async def clear_awaiting_checkin(self, chat_id: int) -> None:
        await self._store.delete(AWAITING_CHECKIN_KEY.format(chat_id=chat_id))

    # -- pending follow-up ---------------------------------------------

    async def set_pending_follow_up(
        self, chat_id: int, task_id: str, content: str, qstash_message_id: str | None,
    ) -> None:
        record = PendingFollowUp(task_id=task_id, content=content, qstash_message_id=qstash_message_id)
        await self._store.set(
            FOLLOW_UP_KEY.format(chat_id=chat_id), _dumps(record), ttl_seconds=FOLLOW_UP_TTL,
        )

    async def get_pending_follow_up(self, chat_id: int) -> PendingFollowUp | None:
        data = _loads(await self._store.get(FOLLOW_UP_KEY.format(chat_id=chat_id)))
        if data is None:
            return None
        return PendingFollowUp(
            task_id=data["task_id"],
            content=data.get("content", ""),
            qstash_message_id=data.get("qstash_message_id"),
        )

    async def clear_pending_follow_up(self, chat_id: int) -> None:
        await self._store.delete(FOLLOW_UP_KEY.format(chat_id=chat_id))

    # -- check-ins -----------------------------------------------------

    async def save_checkin(self, chat_id: int, rating: int, notes: str | None = None) -> CheckIn:
        """One check-in per local day; a second one the same day replaces the first."""
        now = utcnow()
        checkin = CheckIn(
            id=generate_id(),
            chat_id=chat_id,
            date=local_date_key(self._tz, now),
            rating=max(1, min(5, rating)),
            notes=notes,
            created_at=now,
        )
        await self._store.set(
            CHECKIN_KEY.format(chat_id=chat_id, date=checkin.date),
            _dumps(checkin),
            ttl_seconds=CHECKIN_TTL,
        )
        logger.info("Check-in saved for %d: %d/5", chat_id, checkin.rating)
        return checkin

    async def get_weekly_checkins(self, chat_id: int) -> list[CheckIn]:
        checkins: list[CheckIn] = []
        for day in reversed(_last_days(self._tz, 7)):
            data = _loads(await self._store.get(CHECKIN_KEY.format(chat_id=chat_id, date=day)))
            if data is not None:
                checkins.append(CheckIn(
                    id=data["id"],
                    chat_id=int(data["chat_id"]),
                    date=data["date"],
                    rating=int(data["rating"]),
                    notes=data.get("notes"),
                    created_at=_dt(data["created_at"]),
                ))
        return checkins

    # -- brain dumps ---------------------------------------------------

    async def create_brain_dump(self, chat_id: int, content: str) -> BrainDump:
        now = utcnow()
        dump = BrainDump(id=generate_id(), chat_id=chat_id, content=content, created_at=now)
        set_key = DUMPS_SET_KEY.format(chat_id=chat_id, date=local_date_key(self._tz, now))
        await self._store.set(
            DUMP_KEY.format(chat_id=chat_id, dump_id=dump.id), _dumps(dump), ttl_seconds=DUMP_TTL,
        )
        await self._store.sadd(set_key, dump.id)
        await self._store.expire(set_key, DUMP_TTL)
        return dump

    async def get_weekly_dumps(self, chat_id: int) -> list[BrainDump]:
        dumps: list[BrainDump] = []
        for day in _last_days(self._tz, 7):
            dump_ids = await self._store.smembers(DUMPS_SET_KEY.format(chat_id=chat_id, date=day))
            for dump_id in dump_ids:
                data = _loads(await self._store.get(DUMP_KEY.format(chat_id=chat_id, dump_id=dump_id)))
                if data is not None:
                    dumps.append(BrainDump(
                        id=data["id"],
                        chat_id=int(data["chat_id"]),
                        content=data["content"],
                        created_at=_dt(data["created_at"]),
                    ))
        dumps.sort(key=lambda d: d.created_at)
        return dumps

    # -- conversation history ------------------------------------------

    async def get_conversation_history(self, chat_id: int) -> list[ConversationMessage]:
        raw = await self._store.get(CONVERSATION_KEY.format(chat_id=chat_id))
        if not raw:
            return []
        try:
            entries = json.loads(raw)
        except json.JSONDecodeError:
            return []
        return [
            ConversationMessage(role=e["role"], content=e["content"], timestamp=_dt(e["timestamp"]))
            for e in entries
        ]

    async def add_to_conversation(
        self, chat_id: int, user_message: str, assistant_response: str,
    ) -> None:
        """Append one exchange, keeping the last few for 24 hours."""
        history = await self.get_conversation_history(chat_id)
        now = utcnow()
        history.append(ConversationMessage(role="user", content=user_message, timestamp=now))
        history.append(ConversationMessage(role="assistant", content=assistant_response, timestamp=now))
        trimmed = history[-(MAX_CONVERSATION_EXCHANGES * 2):]
        await self._store.set(
            CONVERSATION_KEY.format(chat_id=chat_id),
            json.dumps([asdict(m) for m in trimmed], default=_json_default),
            ttl_seconds=CONVERSATION_TTL,
        )
