"""QStash scheduling adapter — implements SchedulerPort.

Every one-shot callback and recurring schedule is a JSON POST to the single
notify endpoint. QStash retries failed deliveries, so the same callback can
arrive more than once; the campaign engine is responsible for idempotency.
"""

from __future__ import annotations

import logging

from qstash import AsyncQStash, Receiver

from tama.ports.scheduler_port import OneShotKind, RecurringKind, SchedulerError

logger = logging.getLogger(__name__)

DELIVERY_RETRIES = 3


class QStashScheduler:
    """QStash implementation of SchedulerPort."""

    def __init__(
        self,
        token: str | None = None,
        callback_url: str | None = None,
        timezone: str | None = None,
        current_signing_key: str | None = None,
        next_signing_key: str | None = None,
        client: AsyncQStash | None = None,
    ) -> None:
        from tama.config import settings

        self._client = client or AsyncQStash(token or settings.QSTASH_TOKEN)
        self._callback_url = callback_url or settings.notify_url
        self._timezone = timezone or settings.TIMEZONE

        current = settings.QSTASH_CURRENT_SIGNING_KEY if current_signing_key is None else current_signing_key
        nxt = settings.QSTASH_NEXT_SIGNING_KEY if next_signing_key is None else next_signing_key
        if current and nxt:
            self._receiver = Receiver(current_signing_key=current, next_signing_key=nxt)
        elif current or nxt:
            # A lone key still enforces signatures; it just won't survive a key rotation.
            logger.warning("Only one QStash signing key is set; using it for both current and next")
            key = current or nxt
            self._receiver = Receiver(current_signing_key=key, next_signing_key=key)
        else:
            self._receiver = None

    async def schedule_one_shot(
        self, chat_id: int, task_id: str, delay_minutes: int, kind: OneShotKind,
    ) -> str:
        body = {"chatId": chat_id, "taskId": task_id, "type": kind}
        try:
            response = await self._client.message.publish_json(
                url=self._callback_url,
                body=body,
                delay=f"{max(int(delay_minutes), 0)}m",
                retries=DELIVERY_RETRIES,
            )
        except Exception as exc:
            raise SchedulerError(f"Failed to schedule {kind} for task {task_id}: {exc}") from exc

        logger.info(
            "Scheduled %s for task %s in %d min (message %s)",
            kind, task_id, delay_minutes, response.message_id,
        )
        return response.message_id

    async def schedule_recurring(self, chat_id: int, cron: str, kind: RecurringKind) -> str:
        body = {"chatId": chat_id, "type": kind}
        try:
            schedule_id = await self._client.schedule.create_json(
                destination=self._callback_url,
                cron=f"CRON_TZ={self._timezone} {cron}",
                body=body,
                retries=DELIVERY_RETRIES,
            )
        except Exception as exc:
            raise SchedulerError(f"Failed to install {kind} schedule for chat {chat_id}: {exc}") from exc

        logger.info("Installed %s schedule %s for chat %d (%s)", kind, schedule_id, chat_id, cron)
        return schedule_id

    async def cancel_one_shot(self, message_id: str) -> None:
        """Best effort: the message may already have been delivered."""
        if not message_id:
            return
        try:
            await self._client.message.cancel(message_id)
            logger.info("Cancelled message %s", message_id)
        except Exception as exc:
            logger.warning("Could not cancel message %s: %s", message_id, exc)

    async def cancel_recurring(self, schedule_id: str) -> None:
        if not schedule_id:
            return
        try:
            await self._client.schedule.delete(schedule_id)
            logger.info("Deleted schedule %s", schedule_id)
        except Exception as exc:
            logger.warning("Could not delete schedule %s: %s", schedule_id, exc)

    def verify_signature(self, signature: str | None, raw_body: str) -> bool:
        """Check the Upstash-Signature header against the raw request body."""
        if self._receiver is None:
            logger.warning("QStash signing keys not configured; accepting unsigned callback")
            return True
        if not signature:
            return False
        try:
            self._receiver.verify(signature=signature, body=raw_body)
        except Exception as exc:
            logger.warning("Rejected callback with invalid signature: %s", exc)
            return False
        return True
