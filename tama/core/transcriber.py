"""
Tama Assistant — Audio Transcriber.

Voice notes are transcribed with OpenAI Whisper, then flow into the same
intent classifier as typed messages.

This is the only module that talks to Whisper; it uses OPENAI_API_KEY
independently of the configured LLM provider.
"""

from __future__ import annotations

import io
import logging

from openai import AsyncOpenAI

from tama.config import settings

logger = logging.getLogger(__name__)

_client: AsyncOpenAI | None = None


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY or settings.LLM_API_KEY)
    return _client


async def transcribe_audio(audio: bytes, filename: str = "voice.ogg") -> str:
    """Transcribe raw audio bytes using OpenAI Whisper.

    Args:
        audio: Audio payload as downloaded from Telegram (OGG/Opus).
        filename: Name hint; Whisper infers the container from the extension.

    Returns:
        Transcribed text string.

    Raises:
        Exception: If the Whisper API call fails.
    """
    buffer = io.BytesIO(audio)
    buffer.name = filename
    try:
        response = await _get_client().audio.transcriptions.create(
            model="whisper-1",
            file=buffer,
            language="en",
        )
        text = response.text.strip()
        logger.info("Transcribed %d chars from %d bytes", len(text), len(audio))
        return text
    except Exception as exc:
        logger.error("Whisper transcription failed: %s", exc)
        raise
