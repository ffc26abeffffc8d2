"""Webhook endpoints: scheduler callbacks, Telegram updates, health."""

import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from telegram import Update

from tama.config import settings
from tama.core.campaign import NotificationPayload
from tama.factory import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "Upstash-Signature"
MESSAGE_ID_HEADER = "Upstash-Message-Id"


@router.post("/notify")
async def notify(
    request: Request, services: Annotated[Services, Depends(get_services)],
) -> dict:
    """Scheduler callback. Any structurally valid payload is acknowledged with 200,
    including no-ops, so the transport does not retry finished work."""
    raw_body = (await request.body()).decode("utf-8")

    if not services.scheduler.verify_signature(request.headers.get(SIGNATURE_HEADER), raw_body):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = NotificationPayload.model_validate_json(raw_body)
    except ValidationError as exc:
        logger.warning("Rejected callback payload: %s", exc.errors()[:1])
        raise HTTPException(status_code=400, detail="Invalid payload") from exc

    try:
        handled = await services.campaign.handle_callback(
            payload, delivery_id=request.headers.get(MESSAGE_ID_HEADER),
        )
    except Exception as exc:
        logger.exception("Callback %s for chat %d failed", payload.type, payload.chat_id)
        raise HTTPException(status_code=500, detail="Internal error") from exc

    return {"ok": True, "handled": handled}


@router.post("/telegram")
async def telegram_webhook(
    request: Request, services: Annotated[Services, Depends(get_services)],
) -> dict:
    """Feed a Telegram update into the bot application."""
    if services.telegram is None:
        raise HTTPException(status_code=503, detail="Telegram application not configured")

    data = await request.json()
    update = Update.de_json(data, services.telegram.bot)
    await services.telegram.process_update(update)
    return {"ok": True}


@router.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "env": {
            "hasTelegramToken": bool(settings.TELEGRAM_BOT_TOKEN),
            "hasLlmKey": bool(settings.LLM_API_KEY),
            "hasOpenAIKey": bool(settings.OPENAI_API_KEY),
            "hasQstashToken": bool(settings.QSTASH_TOKEN),
            "hasSigningKeys": bool(settings.QSTASH_CURRENT_SIGNING_KEY and settings.QSTASH_NEXT_SIGNING_KEY),
            "storeBackend": settings.STORE_BACKEND,
            "timezone": settings.TIMEZONE,
        },
    }
