"""Tests for tama.bot.telegram_bot — Telegram handlers and authorization.

The ActionService, notifier and transcriber are mocked.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from tama.bot.telegram_bot import (
    ERROR_REPLY,
    TRANSCRIBE_ERROR_REPLY,
    build_app,
    cmd_help,
    cmd_start,
    handle_text,
    handle_voice,
    is_authorized,
)
from tama.core.action_service import ResponseKind, ServiceResponse


def _make_update(text="hi", user_id=12345, chat_id=12345):
    """Create a mock Update with a text message from an authorized user."""
    update = MagicMock()
    update.message.text = text
    update.effective_user.id = user_id
    update.effective_chat.id = chat_id
    update.message.reply_text = AsyncMock()
    return update


def _make_context(response=None):
    context = MagicMock()
    service = MagicMock()
    service.process_text = AsyncMock(
        return_value=response or ServiceResponse(ResponseKind.SUCCESS, "Got it 🐾"),
    )
    service.register_chat = AsyncMock()
    notifier = MagicMock()
    notifier.send_message = AsyncMock()
    context.bot_data = {"service": service, "notifier": notifier}
    context.bot.send_chat_action = AsyncMock()
    return context


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class TestIsAuthorized:
    @patch("tama.bot.telegram_bot.settings")
    def test_listed_user(self, mock_settings):
        mock_settings.ALLOWED_USER_IDS = [12345]
        assert is_authorized(12345) is True
        assert is_authorized(999) is False
        assert is_authorized(None) is False

    @patch("tama.bot.telegram_bot.settings")
    def test_empty_list_allows_everyone(self, mock_settings):
        mock_settings.ALLOWED_USER_IDS = []
        assert is_authorized(999) is True


class TestAuthorizedOnly:
    @pytest.mark.asyncio
    async def test_stranger_is_silently_ignored(self):
        update = _make_update(user_id=999)
        context = _make_context()

        await handle_text(update, context)

        context.bot_data["service"].process_text.assert_not_called()
        context.bot_data["notifier"].send_message.assert_not_called()
        update.message.reply_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_user_is_ignored(self):
        update = _make_update()
        update.effective_user = None
        context = _make_context()
        await handle_text(update, context)
        context.bot_data["service"].process_text.assert_not_called()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    @pytest.mark.asyncio
    async def test_start_registers_chat(self):
        update = _make_update("/start")
        context = _make_context()

        await cmd_start(update, context)

        context.bot_data["service"].register_chat.assert_awaited_once_with(12345)
        text = update.message.reply_text.call_args.args[0]
        assert "Tama" in text

    @pytest.mark.asyncio
    async def test_help(self):
        update = _make_update("/help")
        await cmd_help(update, _make_context())
        assert "remind me" in update.message.reply_text.call_args.args[0]


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class TestHandleText:
    @pytest.mark.asyncio
    async def test_reply_goes_through_notifier(self):
        update = _make_update("remind me to call mom in 2 hours")
        context = _make_context(ServiceResponse(ResponseKind.SUCCESS, "Got it, I'll remind you."))

        await handle_text(update, context)

        context.bot.send_chat_action.assert_awaited_once()
        context.bot_data["service"].process_text.assert_awaited_once_with(
            12345, "remind me to call mom in 2 hours",
        )
        context.bot_data["notifier"].send_message.assert_awaited_once_with(12345, "Got it, I'll remind you.")

    @pytest.mark.asyncio
    async def test_service_failure_sends_apology(self):
        update = _make_update("hello")
        context = _make_context()
        context.bot_data["service"].process_text.side_effect = RuntimeError("store down")

        await handle_text(update, context)

        context.bot_data["notifier"].send_message.assert_awaited_once_with(12345, ERROR_REPLY)


class TestHandleVoice:
    def _voice_context(self, audio=b"OggS"):
        context = _make_context()
        voice_file = MagicMock()
        voice_file.download_as_bytearray = AsyncMock(return_value=bytearray(audio))
        context.bot.get_file = AsyncMock(return_value=voice_file)
        return context

    @pytest.mark.asyncio
    async def test_transcribed_voice_is_processed(self):
        update = _make_update()
        context = self._voice_context()

        with patch("tama.core.transcriber.transcribe_audio", AsyncMock(return_value="call mom at five")) as mock_t:
            await handle_voice(update, context)

        mock_t.assert_awaited_once_with(b"OggS")
        update.message.reply_text.assert_awaited_once_with("🎤 I heard: call mom at five")
        context.bot_data["service"].process_text.assert_awaited_once_with(12345, "call mom at five")

    @pytest.mark.asyncio
    async def test_transcription_failure(self):
        update = _make_update()
        context = self._voice_context()

        with patch("tama.core.transcriber.transcribe_audio", AsyncMock(side_effect=RuntimeError("whisper down"))):
            await handle_voice(update, context)

        update.message.reply_text.assert_awaited_once_with(TRANSCRIBE_ERROR_REPLY)
        context.bot_data["service"].process_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_transcription(self):
        update = _make_update()
        context = self._voice_context()

        with patch("tama.core.transcriber.transcribe_audio", AsyncMock(return_value="")):
            await handle_voice(update, context)

        update.message.reply_text.assert_awaited_once_with(TRANSCRIBE_ERROR_REPLY)
        context.bot_data["service"].process_text.assert_not_called()


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


class TestBuildApp:
    def test_registers_handlers_and_notifier(self):
        from tama.adapters.telegram_notifier import TelegramNotifier

        app = build_app()
        assert len(app.handlers[0]) == 4
        assert isinstance(app.bot_data["notifier"], TelegramNotifier)
        assert "service" not in app.bot_data

    def test_attaches_given_service(self):
        service = MagicMock()
        notifier = MagicMock()
        app = build_app(service=service, notifier=notifier)
        assert app.bot_data["service"] is service
        assert app.bot_data["notifier"] is notifier
