"""Composition root: builds every service once and hands them out.

Nothing below this module constructs its own collaborators; tests build a
Services bundle from fakes and pass it to create_app().
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI
from telegram.ext import Application

from tama.config import settings
from tama.core.action_service import ActionService
from tama.core.campaign import CampaignEngine
from tama.core.composer import MessageComposer
from tama.core.preferences import PreferenceCoordinator
from tama.data.db import ConversationDB, ListDB, TaskDB
from tama.ports.notification_port import NotificationPort
from tama.ports.scheduler_port import SchedulerPort
from tama.ports.store_port import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: KeyValueStore
    tasks: TaskDB
    lists: ListDB
    conversations: ConversationDB
    scheduler: SchedulerPort
    notifier: NotificationPort
    composer: MessageComposer
    campaign: CampaignEngine
    preferences: PreferenceCoordinator
    actions: ActionService
    telegram: Application | None = None


def build_services(
    store: KeyValueStore | None = None,
    scheduler: SchedulerPort | None = None,
    notifier: NotificationPort | None = None,
    composer: MessageComposer | None = None,
    telegram: Application | None = None,
    timezone: str | None = None,
) -> Services:
    """Wire adapters into the core. Anything not supplied uses the configured default."""
    timezone = timezone or settings.TIMEZONE

    if store is None:
        from tama.adapters.store_factory import create_store
        store = create_store()

    if scheduler is None:
        from tama.adapters.qstash_scheduler import QStashScheduler
        scheduler = QStashScheduler(timezone=timezone)

    if notifier is None:
        if telegram is None:
            from tama.bot.telegram_bot import build_app
            telegram = build_app()
        notifier = telegram.bot_data["notifier"]

    composer = composer or MessageComposer()
    tasks = TaskDB(store, timezone=timezone)
    lists = ListDB(store)
    conversations = ConversationDB(store, timezone=timezone)
    preferences = PreferenceCoordinator(conversations, tasks, lists, scheduler, timezone=timezone)
    campaign = CampaignEngine(tasks, conversations, scheduler, notifier, composer, preferences=preferences)
    actions = ActionService(tasks, lists, conversations, campaign, preferences, composer, timezone=timezone)

    if telegram is not None:
        telegram.bot_data["service"] = actions

    logger.info("Services built (store=%s, scheduler=%s)", type(store).__name__, type(scheduler).__name__)
    return Services(
        store=store,
        tasks=tasks,
        lists=lists,
        conversations=conversations,
        scheduler=scheduler,
        notifier=notifier,
        composer=composer,
        campaign=campaign,
        preferences=preferences,
        actions=actions,
        telegram=telegram,
    )


# Global services bundle for dependency injection
_services: Services | None = None


def get_services() -> Services:
    """Get or create the Services singleton."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Services | None) -> None:
    global _services
    _services = services


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the Telegram application and register its webhook."""
    services = get_services()
    telegram = services.telegram
    if telegram is not None:
        await telegram.initialize()
        await telegram.start()
        if settings.BASE_URL:
            webhook_url = f"{settings.BASE_URL.rstrip('/')}/api/telegram"
            await telegram.bot.set_webhook(url=webhook_url)
            logger.info("[Lifespan] Telegram webhook set to %s", webhook_url)
        else:
            logger.warning("[Lifespan] BASE_URL not set; Telegram webhook not registered")
    try:
        yield
    finally:
        if telegram is not None:
            await telegram.stop()
            await telegram.shutdown()
        close = getattr(services.store, "aclose", None)
        if close is not None:
            await close()
        logger.info("[Lifespan] Shut down")


def create_app(services: Services | None = None) -> FastAPI:
    """Create FastAPI application."""
    from tama.api.webhooks import router

    if services is not None:
        set_services(services)

    app = FastAPI(
        title="Tama",
        description="Gentle reminder companion: Telegram webhook and scheduler callbacks",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router, prefix="/api")
    return app
