"""Tests for the QStash scheduling adapter (client and receiver mocked)."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tama.adapters.qstash_scheduler import DELIVERY_RETRIES, QStashScheduler
from tama.ports.scheduler_port import SchedulerError

CALLBACK = "https://tama.example.com/api/notify"


def _client():
    client = MagicMock()
    client.message.publish_json = AsyncMock(return_value=MagicMock(message_id="msg_abc"))
    client.message.cancel = AsyncMock()
    client.schedule.create_json = AsyncMock(return_value="scd_123")
    client.schedule.delete = AsyncMock()
    return client


def _scheduler(client, current="", nxt=""):
    return QStashScheduler(
        token="t",
        callback_url=CALLBACK,
        timezone="America/Los_Angeles",
        current_signing_key=current,
        next_signing_key=nxt,
        client=client,
    )


class TestScheduleOneShot:
    @pytest.mark.asyncio
    async def test_publishes_json_with_delay(self):
        client = _client()
        message_id = await _scheduler(client).schedule_one_shot(42, "task-1", 30, "nag")

        assert message_id == "msg_abc"
        client.message.publish_json.assert_awaited_once_with(
            url=CALLBACK,
            body={"chatId": 42, "taskId": "task-1", "type": "nag"},
            delay="30m",
            retries=DELIVERY_RETRIES,
        )

    @pytest.mark.asyncio
    async def test_negative_delay_is_clamped(self):
        client = _client()
        await _scheduler(client).schedule_one_shot(42, "task-1", -5, "reminder")
        assert client.message.publish_json.call_args.kwargs["delay"] == "0m"

    @pytest.mark.asyncio
    async def test_failure_raises_scheduler_error(self):
        client = _client()
        client.message.publish_json.side_effect = RuntimeError("503 from qstash")
        with pytest.raises(SchedulerError, match="reminder"):
            await _scheduler(client).schedule_one_shot(42, "task-1", 60, "reminder")


class TestScheduleRecurring:
    @pytest.mark.asyncio
    async def test_cron_carries_timezone(self):
        client = _client()
        schedule_id = await _scheduler(client).schedule_recurring(42, "0 20 * * *", "daily_checkin")

        assert schedule_id == "scd_123"
        client.schedule.create_json.assert_awaited_once_with(
            destination=CALLBACK,
            cron="CRON_TZ=America/Los_Angeles 0 20 * * *",
            body={"chatId": 42, "type": "daily_checkin"},
            retries=DELIVERY_RETRIES,
        )

    @pytest.mark.asyncio
    async def test_failure_raises_scheduler_error(self):
        client = _client()
        client.schedule.create_json.side_effect = RuntimeError("boom")
        with pytest.raises(SchedulerError):
            await _scheduler(client).schedule_recurring(42, "0 8 * * *", "morning_review")


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_one_shot(self):
        client = _client()
        await _scheduler(client).cancel_one_shot("msg_abc")
        client.message.cancel.assert_awaited_once_with("msg_abc")

    @pytest.mark.asyncio
    async def test_cancel_failure_is_swallowed(self):
        client = _client()
        client.message.cancel.side_effect = RuntimeError("already delivered")
        await _scheduler(client).cancel_one_shot("msg_abc")

    @pytest.mark.asyncio
    async def test_cancel_without_id_is_noop(self):
        client = _client()
        await _scheduler(client).cancel_one_shot("")
        client.message.cancel.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_recurring_failure_is_swallowed(self):
        client = _client()
        client.schedule.delete.side_effect = RuntimeError("not found")
        await _scheduler(client).cancel_recurring("scd_123")
        client.schedule.delete.assert_awaited_once_with("scd_123")


class TestVerifySignature:
    def test_no_keys_accepts(self):
        assert _scheduler(_client()).verify_signature(None, "{}") is True

    @patch("tama.adapters.qstash_scheduler.Receiver")
    def test_missing_signature_rejected(self, mock_receiver):
        scheduler = _scheduler(_client(), current="cur", nxt="next")
        assert scheduler.verify_signature(None, "{}") is False
        mock_receiver.return_value.verify.assert_not_called()

    @patch("tama.adapters.qstash_scheduler.Receiver")
    def test_valid_signature(self, mock_receiver):
        scheduler = _scheduler(_client(), current="cur", nxt="next")
        assert scheduler.verify_signature("sig", '{"a":1}') is True
        mock_receiver.return_value.verify.assert_called_once_with(signature="sig", body='{"a":1}')

    @patch("tama.adapters.qstash_scheduler.Receiver")
    def test_invalid_signature(self, mock_receiver):
        mock_receiver.return_value.verify.side_effect = ValueError("invalid signature")
        scheduler = _scheduler(_client(), current="cur", nxt="next")
        assert scheduler.verify_signature("bad", "{}") is False

    @patch("tama.adapters.qstash_scheduler.Receiver")
    def test_single_key_is_used_for_both(self, mock_receiver, caplog):
        with caplog.at_level("WARNING", logger="tama.adapters.qstash_scheduler"):
            scheduler = _scheduler(_client(), current="cur", nxt="")

        mock_receiver.assert_called_once_with(current_signing_key="cur", next_signing_key="cur")
        assert "Only one QStash signing key" in caplog.text
        assert scheduler.verify_signature(None, "{}") is False
