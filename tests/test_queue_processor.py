"""
Tests for QueueProcessor - dispatch, retry classification and claim safety
"""
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from notifier.db.models.queued_message import MessageChannel, MessageStatus
from notifier.db.models.user_message import UserMessage
from notifier.domain.services.inbox_writer import InboxWriter, InboxWriteResult
from notifier.domain.services.message_queue import MessageQueueStore
from notifier.domain.services.providers.base_provider import ProviderResponse
from notifier.domain.services.providers.email_provider import EmailProvider
from notifier.domain.services.providers.sms_provider import SMSProvider
from notifier.domain.services.queue_processor import ProcessQueueResult, QueueProcessor


def _mock_email_provider(response: ProviderResponse | None = None) -> AsyncMock:
    provider = AsyncMock(spec=EmailProvider)
    provider.send.return_value = response or ProviderResponse(
        success=True, provider="resend", message_id="re_123"
    )
    return provider


def _mock_sms_provider(response: ProviderResponse | None = None) -> AsyncMock:
    provider = AsyncMock(spec=SMSProvider)
    provider.send.return_value = response or ProviderResponse(
        success=True, provider="twilio", message_id="SM123"
    )
    return provider


def _processor(db: AsyncSession, email=None, sms=None, inbox_writer=None) -> QueueProcessor:
    return QueueProcessor(
        db,
        email_provider=email or _mock_email_provider(),
        sms_provider=sms or _mock_sms_provider(),
        inbox_writer=inbox_writer,
    )


class TestProcessQueue:

    @pytest.mark.integration
    async def test_empty_queue(self, db_session: AsyncSession) -> None:
        result = await _processor(db_session).process_queue()

        assert result == ProcessQueueResult()

    @pytest.mark.integration
    async def test_sends_each_channel(self, db_session: AsyncSession, queued_message_factory) -> None:
        email_msg = await queued_message_factory(channel=MessageChannel.EMAIL)
        sms_msg = await queued_message_factory(channel=MessageChannel.SMS, body="Order confirmed")
        inbox_msg = await queued_message_factory(
            channel=MessageChannel.INBOX,
            inbox_title="Order confirmed",
            inbox_action_url="/orders/ORD-12345",
        )
        email = _mock_email_provider()
        sms = _mock_sms_provider()

        result = await _processor(db_session, email=email, sms=sms).process_queue()

        assert result.processed == 3
        assert result.failed == 0
        store = MessageQueueStore(db_session)
        assert (await store.get_message(email_msg.id)).provider_message_id == "re_123"
        assert (await store.get_message(sms_msg.id)).provider_message_id == "SM123"

        inbox_row = await store.get_message(inbox_msg.id)
        assert inbox_row.status == MessageStatus.SENT
        inbox_entries = (await db_session.execute(select(UserMessage))).scalars().all()
        assert len(inbox_entries) == 1
        assert inbox_row.provider_message_id == str(inbox_entries[0].id)
        assert inbox_entries[0].user_id == "cust-1"
        assert inbox_entries[0].title == "Order confirmed"
        assert inbox_entries[0].action_url == "/orders/ORD-12345"

        sent_email = email.send.call_args.args[0]
        assert sent_email.to == "john@example.com"
        assert sent_email.subject == "Order ORD-12345 confirmed"
        assert {"name": "template_key", "value": "order_confirmation"} in sent_email.tags
        assert sms.send.call_args.args[0].to == "+447700900123"

    @pytest.mark.integration
    async def test_retryable_failure_is_rescheduled(
        self, db_session: AsyncSession, queued_message_factory
    ) -> None:
        message = await queued_message_factory()
        email = _mock_email_provider(
            ProviderResponse(success=False, provider="resend", error="Resend API error: status 503")
        )

        result = await _processor(db_session, email=email).process_queue()

        assert result.failed == 1
        assert result.errors == [
            {"message_id": message.id, "error": "Resend API error: status 503"}
        ]
        stored = await MessageQueueStore(db_session).get_message(message.id)
        assert stored.status == MessageStatus.PENDING
        assert stored.retry_count == 1

    @pytest.mark.integration
    async def test_non_retryable_failure_is_dead_lettered(
        self, db_session: AsyncSession, queued_message_factory
    ) -> None:
        message = await queued_message_factory(channel=MessageChannel.SMS, recipient_phone="0207123456")
        sms = _mock_sms_provider(
            ProviderResponse(
                success=False,
                provider="twilio",
                error="Phone number must be in E.164 format (e.g., +441234567890)",
                retryable=False,
            )
        )

        await _processor(db_session, sms=sms).process_queue()

        stored = await MessageQueueStore(db_session).get_message(message.id)
        assert stored.status == MessageStatus.FAILED
        assert stored.retry_count == stored.max_retries

    @pytest.mark.integration
    async def test_unexpected_exception_marks_failed_and_continues(
        self, db_session: AsyncSession, queued_message_factory
    ) -> None:
        broken = await queued_message_factory(channel=MessageChannel.EMAIL)
        fine = await queued_message_factory(channel=MessageChannel.SMS)
        email = _mock_email_provider()
        email.send.side_effect = RuntimeError("provider client exploded")

        result = await _processor(db_session, email=email).process_queue()

        assert result.processed == 1
        assert result.failed == 1
        assert result.errors[0]["message_id"] == broken.id
        store = MessageQueueStore(db_session)
        broken_row = await store.get_message(broken.id)
        assert broken_row.status == MessageStatus.PENDING
        assert broken_row.retry_count == 1
        assert broken_row.error_message == "provider client exploded"
        assert (await store.get_message(fine.id)).status == MessageStatus.SENT

    @pytest.mark.integration
    async def test_unknown_channel_is_skipped_and_failed(
        self, db_session: AsyncSession, queued_message_factory
    ) -> None:
        message = await queued_message_factory(channel="fax")

        result = await _processor(db_session).process_queue()

        assert result.skipped == 1
        assert result.processed == 0
        stored = await MessageQueueStore(db_session).get_message(message.id)
        assert stored.status == MessageStatus.FAILED
        assert stored.error_message == "Unknown channel: fax"

    @pytest.mark.integration
    async def test_inbox_write_error_is_retryable(
        self, db_session: AsyncSession, queued_message_factory
    ) -> None:
        message = await queued_message_factory(channel=MessageChannel.INBOX)
        inbox_writer = AsyncMock(spec=InboxWriter)
        inbox_writer.create_inbox_message.return_value = InboxWriteResult(error="database is locked")

        result = await _processor(db_session, inbox_writer=inbox_writer).process_queue()

        assert result.failed == 1
        stored = await MessageQueueStore(db_session).get_message(message.id)
        assert stored.status == MessageStatus.PENDING
        assert stored.error_message == "database is locked"

    @pytest.mark.integration
    async def test_batch_size_limits_work(
        self, db_session: AsyncSession, queued_message_factory
    ) -> None:
        for _ in range(4):
            await queued_message_factory()

        result = await _processor(db_session).process_queue(batch_size=3)

        assert result.processed == 3
        stats = await MessageQueueStore(db_session).get_queue_stats()
        assert stats.sent == 3
        assert stats.pending == 1


class TestConcurrentProcessors:
    """Two workers that read the same batch must never both send a message"""

    @pytest.mark.integration
    async def test_second_worker_skips_claimed_messages(
        self, db_session: AsyncSession, queued_message_factory
    ) -> None:
        for _ in range(3):
            await queued_message_factory()
        email = _mock_email_provider()
        first = _processor(db_session, email=email)
        second = _processor(db_session, email=email)

        # Both workers load the batch before either claims anything
        second_batch = await second.queue.get_pending_messages()
        first_result = await first.process_queue()

        second_result = ProcessQueueResult()
        for message_id in [m.id for m in second_batch]:
            await second._process_message(message_id, second_result)

        assert first_result.processed == 3
        assert second_result.processed == 0
        assert second_result.skipped == 3
        assert email.send.await_count == 3

    @pytest.mark.integration
    async def test_claimed_message_is_not_sent_again(
        self, db_session: AsyncSession, queued_message_factory
    ) -> None:
        message = await queued_message_factory()
        email = _mock_email_provider()
        processor = _processor(db_session, email=email)

        (loaded,) = await processor.queue.get_pending_messages()
        # Another worker wins the claim in between
        assert await MessageQueueStore(db_session).claim_message(message.id) is True

        result = ProcessQueueResult()
        await processor._process_message(loaded.id, result)

        assert result.skipped == 1
        email.send.assert_not_awaited()


class TestQueueStats:

    @pytest.mark.integration
    async def test_delegates_to_store(self, db_session: AsyncSession, queued_message_factory) -> None:
        await queued_message_factory()

        stats = await _processor(db_session).get_queue_stats()

        assert stats.pending == 1
        assert stats.total == 1
