"""Shared test fixtures and configuration.

Sets up fake environment variables so tama.config doesn't sys.exit(),
and provides in-memory doubles for the store, the scheduler and the
Telegram transport.
"""

import os

# Patch env vars BEFORE any tama imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("STORE_BACKEND", "sqlite")
os.environ.setdefault("DATABASE_PATH", "data/test-tama.db")
os.environ.setdefault("TIMEZONE", "America/Los_Angeles")
os.environ.setdefault("BASE_URL", "https://tama.example.com")
os.environ.setdefault("QSTASH_TOKEN", "fake-qstash-token")
os.environ.setdefault("QSTASH_CURRENT_SIGNING_KEY", "")
os.environ.setdefault("QSTASH_NEXT_SIGNING_KEY", "")

from unittest.mock import AsyncMock

import pytest

from tama.ports.scheduler_port import SchedulerError

CHAT_ID = 12345
TZ = "America/Los_Angeles"


class InMemoryStore:
    """KeyValueStore double. TTLs are recorded, never enforced."""

    def __init__(self):
        self.values: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, ttl_seconds=None):
        self.values[key] = value
        if ttl_seconds:
            self.ttls[key] = ttl_seconds
        else:
            self.ttls.pop(key, None)

    async def delete(self, key):
        self.values.pop(key, None)
        self.sets.pop(key, None)
        self.ttls.pop(key, None)

    async def sadd(self, key, member):
        members = self.sets.setdefault(key, set())
        if member in members:
            return False
        members.add(member)
        return True

    async def srem(self, key, member):
        self.sets.get(key, set()).discard(member)

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    async def expire(self, key, ttl_seconds):
        self.ttls[key] = ttl_seconds

    async def incr(self, key):
        value = int(self.values.get(key, "0")) + 1
        self.values[key] = str(value)
        return value


class FakeScheduler:
    """SchedulerPort double that records every call in order."""

    def __init__(self):
        self.one_shots: list[dict] = []
        self.recurring: list[dict] = []
        self.events: list[tuple] = []
        self.fail_kinds: set[str] = set()
        self.signature_valid = True
        self._counter = 0

    def _next_id(self, prefix):
        self._counter += 1
        return f"{prefix}-{self._counter}"

    async def schedule_one_shot(self, chat_id, task_id, delay_minutes, kind):
        if kind in self.fail_kinds:
            raise SchedulerError(f"{kind} unavailable")
        message_id = self._next_id("msg")
        self.one_shots.append(
            {"id": message_id, "chat_id": chat_id, "task_id": task_id, "delay": delay_minutes, "kind": kind}
        )
        self.events.append(("schedule", kind, message_id))
        return message_id

    async def schedule_recurring(self, chat_id, cron, kind):
        if kind in self.fail_kinds:
            raise SchedulerError(f"{kind} unavailable")
        schedule_id = self._next_id("sched")
        self.recurring.append({"id": schedule_id, "chat_id": chat_id, "cron": cron, "kind": kind})
        self.events.append(("install", kind, schedule_id))
        return schedule_id

    async def cancel_one_shot(self, message_id):
        self.events.append(("cancel", message_id))

    async def cancel_recurring(self, schedule_id):
        self.events.append(("cancel_recurring", schedule_id))

    def verify_signature(self, signature, raw_body):
        return self.signature_valid

    def kinds(self):
        return [s["kind"] for s in self.one_shots]

    @property
    def cancelled(self):
        return [e[1] for e in self.events if e[0] == "cancel"]


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def notifier():
    mock = AsyncMock()
    mock.send_message = AsyncMock()
    return mock


@pytest.fixture
def composer():
    """Composer whose LLM is always down, so every text is the fixed fallback."""
    from tama.core.composer import MessageComposer
    return MessageComposer(complete=AsyncMock(side_effect=RuntimeError("LLM offline")))


@pytest.fixture
def task_db(store):
    from tama.data.db import TaskDB
    return TaskDB(store, timezone=TZ)


@pytest.fixture
def list_db(store):
    from tama.data.db import ListDB
    return ListDB(store)


@pytest.fixture
def conversation_db(store):
    from tama.data.db import ConversationDB
    return ConversationDB(store, timezone=TZ)


@pytest.fixture
def preferences(conversation_db, task_db, list_db, scheduler):
    from tama.core.preferences import PreferenceCoordinator
    return PreferenceCoordinator(conversation_db, task_db, list_db, scheduler, timezone=TZ)


@pytest.fixture
def campaign(task_db, conversation_db, scheduler, notifier, composer, preferences):
    import random
    from tama.core.campaign import CampaignEngine
    return CampaignEngine(
        task_db, conversation_db, scheduler, notifier, composer,
        preferences=preferences, rng=random.Random(7),
    )


@pytest.fixture
def classify():
    return AsyncMock()


@pytest.fixture
def action_service(task_db, list_db, conversation_db, campaign, preferences, composer, classify):
    from tama.core.action_service import ActionService
    return ActionService(
        task_db, list_db, conversation_db, campaign, preferences, composer,
        classify=classify, timezone=TZ,
    )


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_kv.db")
