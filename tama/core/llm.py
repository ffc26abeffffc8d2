"""
Tama Assistant — LLM Provider Abstraction.

Single public function `complete()` that routes to the configured provider.
Provider is selected at startup via the LLM_PROVIDER env var.
Supports: openai (default), anthropic, gemini, cohere.

Every call is bounded by LLM_TIMEOUT_SECONDS; on timeout asyncio.TimeoutError
propagates and callers degrade to their fallback text.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence

from tama.data.models import ConversationMessage

logger = logging.getLogger(__name__)

# (api_key, model, system, messages, max_tokens) -> text
_ProviderFn = Callable[[str, str, str, list[dict], int], Awaitable[str]]

# ---------------------------------------------------------------------------
# Provider implementations
# ---------------------------------------------------------------------------


async def _complete_gemini(api_key: str, model: str, system: str, messages: list[dict], max_tokens: int) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    gm = genai.GenerativeModel(
        model_name=model,
        system_instruction=system,
    )
    contents = [
        {"role": "model" if m["role"] == "assistant" else "user", "parts": [m["content"]]}
        for m in messages
    ]
    response = await gm.generate_content_async(
        contents,
        generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
    )
    return response.text


async def _complete_anthropic(api_key: str, model: str, system: str, messages: list[dict], max_tokens: int) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    response = await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        system=system,
        messages=messages,
    )
    return response.content[0].text


async def _complete_openai(api_key: str, model: str, system: str, messages: list[dict], max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    response = await client.chat.completions.create(
        model=model,
        max_tokens=max_tokens,
        messages=[{"role": "system", "content": system}, *messages],
    )
    return response.choices[0].message.content


async def _complete_cohere(api_key: str, model: str, system: str, messages: list[dict], max_tokens: int) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    response = await client.chat(
        model=model,
        max_tokens=max_tokens,
        messages=[{"role": "system", "content": system}, *messages],
    )
    return response.message.content[0].text


# ---------------------------------------------------------------------------
# Provider selection (runs once at first call)
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, tuple[_ProviderFn, str]] = {
    "openai":    (_complete_openai,    "gpt-4o-mini"),
    "anthropic": (_complete_anthropic, "claude-haiku-4-5-20251001"),
    "gemini":    (_complete_gemini,    "gemini-2.0-flash"),
    "cohere":    (_complete_cohere,    "command-a-03-2025"),
}


def _select_provider() -> tuple[_ProviderFn, str, str]:
    """Read env vars and return (provider_fn, model, api_key)."""
    from tama.config import settings

    provider_name = settings.LLM_PROVIDER.lower()
    if provider_name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={provider_name!r}. "
            f"Supported: {', '.join(_PROVIDERS)}"
        )

    fn, default_model = _PROVIDERS[provider_name]
    model = settings.LLM_MODEL or default_model
    api_key = settings.LLM_API_KEY

    logger.info("LLM provider: %s, model: %s", provider_name, model)
    return fn, model, api_key


# Lazy singleton — populated on first call to complete()
_provider_fn: _ProviderFn | None = None
_model: str = ""
_api_key: str = ""


def _build_messages(
    user_message: str, history: Sequence[ConversationMessage] | None,
) -> list[dict]:
    messages = [{"role": m.role, "content": m.content} for m in history or ()]
    messages.append({"role": "user", "content": user_message})
    return messages


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(
    system: str,
    user_message: str,
    max_tokens: int = 256,
    history: Sequence[ConversationMessage] | None = None,
) -> str:
    """Send a prompt to the configured LLM provider and return the response text.

    Raises on API errors and on timeout — callers should handle exceptions.
    """
    global _provider_fn, _model, _api_key
    from tama.config import settings

    if _provider_fn is None:
        _provider_fn, _model, _api_key = _select_provider()

    messages = _build_messages(user_message, history)
    return await asyncio.wait_for(
        _provider_fn(_api_key, _model, system, messages, max_tokens),
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )
