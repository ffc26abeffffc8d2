"""Tests for tama.core.llm provider routing and tama.core.transcriber."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tama.core import llm, transcriber
from tama.data.models import ConversationMessage


@pytest.fixture(autouse=True)
def reset_provider(monkeypatch):
    monkeypatch.setattr(llm, "_provider_fn", None)
    monkeypatch.setattr(llm, "_model", "")
    monkeypatch.setattr(llm, "_api_key", "")


class TestSelectProvider:
    @patch("tama.config.settings")
    def test_default_model_per_provider(self, mock_settings):
        mock_settings.LLM_PROVIDER = "anthropic"
        mock_settings.LLM_MODEL = ""
        mock_settings.LLM_API_KEY = "k"
        fn, model, api_key = llm._select_provider()
        assert fn is llm._complete_anthropic
        assert model == "claude-haiku-4-5-20251001"
        assert api_key == "k"

    @patch("tama.config.settings")
    def test_model_override(self, mock_settings):
        mock_settings.LLM_PROVIDER = "openai"
        mock_settings.LLM_MODEL = "gpt-4o"
        mock_settings.LLM_API_KEY = "k"
        assert llm._select_provider()[1] == "gpt-4o"

    @patch("tama.config.settings")
    def test_unknown_provider(self, mock_settings):
        mock_settings.LLM_PROVIDER = "llamacorp"
        with pytest.raises(ValueError, match="Unknown LLM_PROVIDER"):
            llm._select_provider()


class TestBuildMessages:
    def test_history_then_user(self):
        now = datetime.now(timezone.utc)
        history = [
            ConversationMessage(role="user", content="hi", timestamp=now),
            ConversationMessage(role="assistant", content="hey 🐾", timestamp=now),
        ]
        assert llm._build_messages("remind me", history) == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hey 🐾"},
            {"role": "user", "content": "remind me"},
        ]

    def test_no_history(self):
        assert llm._build_messages("x", None) == [{"role": "user", "content": "x"}]


class TestComplete:
    @pytest.mark.asyncio
    async def test_routes_to_provider(self):
        provider = AsyncMock(return_value="ok")
        with patch.object(llm, "_select_provider", return_value=(provider, "m", "key")):
            assert await llm.complete("sys", "hello", max_tokens=50) == "ok"
        provider.assert_awaited_once_with("key", "m", "sys", [{"role": "user", "content": "hello"}], 50)

    @pytest.mark.asyncio
    async def test_timeout_propagates(self):
        async def slow(*args):
            await asyncio.sleep(1)
            return "late"

        with patch.object(llm, "_select_provider", return_value=(slow, "m", "key")), \
             patch("tama.config.settings") as mock_settings:
            mock_settings.LLM_TIMEOUT_SECONDS = 0.01
            with pytest.raises(asyncio.TimeoutError):
                await llm.complete("sys", "hello")


class TestTranscriber:
    @pytest.mark.asyncio
    async def test_transcribe_audio(self, monkeypatch):
        client = MagicMock()
        client.audio.transcriptions.create = AsyncMock(return_value=MagicMock(text="  call mom at five  "))
        monkeypatch.setattr(transcriber, "_client", client)

        text = await transcriber.transcribe_audio(b"OggS...")

        assert text == "call mom at five"
        kwargs = client.audio.transcriptions.create.await_args.kwargs
        assert kwargs["model"] == "whisper-1"
        assert kwargs["file"].name == "voice.ogg"
        assert kwargs["file"].read() == b"OggS..."

    @pytest.mark.asyncio
    async def test_transcribe_error_propagates(self, monkeypatch):
        client = MagicMock()
        client.audio.transcriptions.create = AsyncMock(side_effect=RuntimeError("whisper down"))
        monkeypatch.setattr(transcriber, "_client", client)
        with pytest.raises(RuntimeError):
            await transcriber.transcribe_audio(b"x")
