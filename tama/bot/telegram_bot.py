"""
Tama Assistant — Telegram Bot.

Telegram is the only user interface. Text and voice messages flow into the
ActionService; replies go back through the NotificationPort so Markdown
problems are handled in one place.

Security-first: when ALLOWED_USER_IDS is set, everyone else is silently
ignored.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Update
from telegram.constants import ChatAction
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from tama.config import settings

if TYPE_CHECKING:
    from tama.core.action_service import ActionService
    from tama.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

ERROR_REPLY = "Something went sideways on my end. Mind trying again in a bit? 🐾"
TRANSCRIBE_ERROR_REPLY = "Sorry, I couldn't make out that voice message. Could you try again or type it?"


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def is_authorized(user_id: int | None) -> bool:
    """An empty allow-list admits everyone."""
    if not settings.ALLOWED_USER_IDS:
        return True
    return user_id is not None and user_id in settings.ALLOWED_USER_IDS


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if not is_authorized(user.id if user else None):
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Shared processing
# ---------------------------------------------------------------------------


async def _process_text(text: str, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Run a message through the ActionService and send the reply."""
    service: ActionService = context.bot_data["service"]
    notifier: NotificationPort = context.bot_data["notifier"]
    chat_id = update.effective_chat.id

    try:
        await context.bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
        response = await service.process_text(chat_id, text)
    except Exception:
        logger.exception("Failed to process message for chat %d", chat_id)
        await notifier.send_message(chat_id, ERROR_REPLY)
        return

    logger.info("Chat %d → %s", chat_id, response.kind.value)
    await notifier.send_message(chat_id, response.message)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message and first-contact setup."""
    service: ActionService = context.bot_data["service"]
    await service.register_chat(update.effective_chat.id)
    await update.message.reply_text(
        "Hi, I'm *Tama* 🐾\n\n"
        "Tell me what you want to remember, in text or voice:\n"
        "• _remind me to call mom in 2 hours_\n"
        "• _buy bread, eggs and milk at 5pm_\n"
        "• _dentist on Tuesday, it's important_\n\n"
        "Say _done_ when you finish something, or _show my tasks_ anytime. "
        "I'll check in every evening; type /help for more.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — what Tama understands."""
    await update.message.reply_text(
        "*Things you can say:*\n"
        "• reminders: _remind me to stretch in 30 min_\n"
        "• important ones get gentle repeat nudges: _nag me about taxes tomorrow at 10_\n"
        "• lists: _make a packing list: charger, socks_ / _check off socks_\n"
        "• thoughts: _idea: a cat café with board games_\n"
        "• finishing: _done with taxes_ / _cancel the stretch reminder_\n"
        "• schedule: _set my check-in to 9pm_ / _morning review at 7:30_",
        parse_mode="Markdown",
    )


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages."""
    await _process_text(update.message.text, update, context)


@authorized_only
async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle voice messages — transcribe via Whisper, then process like text."""
    from tama.core.transcriber import transcribe_audio

    voice = update.message.voice

    try:
        voice_file = await context.bot.get_file(voice.file_id)
        audio = await voice_file.download_as_bytearray()
        text = await transcribe_audio(bytes(audio))
    except Exception as exc:
        logger.error("Voice handling error: %s", exc)
        await update.message.reply_text(TRANSCRIBE_ERROR_REPLY)
        return

    if not text:
        await update.message.reply_text(TRANSCRIBE_ERROR_REPLY)
        return

    logger.info("Voice transcribed: %s", text[:80])
    await update.message.reply_text(f"🎤 I heard: {text}")
    await _process_text(text, update, context)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    service: ActionService | None = None,
    notifier: NotificationPort | None = None,
    token: str | None = None,
) -> Application:
    """Build the Telegram Application with all handlers.

    Updates arrive through the webhook endpoint, so no Updater is created.
    The service is usually attached afterwards by the composition root,
    which needs app.bot to build the notifier first.
    """
    app = ApplicationBuilder().token(token or settings.TELEGRAM_BOT_TOKEN).updater(None).build()

    if notifier is None:
        from tama.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    app.bot_data["notifier"] = notifier
    if service is not None:
        app.bot_data["service"] = service

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app.add_handler(MessageHandler(filters.VOICE, handle_voice))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app
