"""
Queue Processor - delivers due messages

Runs periodically (Celery beat) and may run in several workers at once.
Every message is claimed with an atomic pending -> processing update before
any provider call, so a message is only ever sent by the worker that won
the claim.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from notifier.core.logging import get_logger, log_async_operation
from notifier.core.validation import mask_recipient
from notifier.db.models.queued_message import MessageChannel, QueuedMessage
from notifier.domain.services.inbox_writer import InboxMessageParams, InboxWriter
from notifier.domain.services.message_queue import MessageQueueStore, QueueStats
from notifier.domain.services.providers.base_provider import ProviderResponse
from notifier.domain.services.providers.email_provider import EmailProvider, EmailSendParams
from notifier.domain.services.providers.sms_provider import SMSProvider, SMSSendParams

logger = get_logger(__name__)


@dataclass
class ProcessQueueResult:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    # [{"message_id": ..., "error": ...}]
    errors: list[dict[str, str]] = field(default_factory=list)


@dataclass
class _DispatchOutcome:
    success: bool
    provider_message_id: str | None = None
    error: str | None = None
    retryable: bool = True


class QueueProcessor:
    """Sends pending messages through the provider of their channel"""

    def __init__(
        self,
        db: AsyncSession,
        *,
        queue: MessageQueueStore | None = None,
        email_provider: EmailProvider | None = None,
        sms_provider: SMSProvider | None = None,
        inbox_writer: InboxWriter | None = None,
    ):
        self.db = db
        self.queue = queue or MessageQueueStore(db)
        self.email_provider = email_provider or EmailProvider()
        self.sms_provider = sms_provider or SMSProvider()
        self.inbox_writer = inbox_writer or InboxWriter(db)

    @log_async_operation("process_message_queue")
    async def process_queue(self, batch_size: int = 100) -> ProcessQueueResult:
        """
        Process one batch of due messages, one at a time.

        Per-message failures are recorded and never abort the batch. Only a
        failure to load the batch itself propagates.
        """
        result = ProcessQueueResult()

        messages = await self.queue.get_pending_messages(batch_size)
        if not messages:
            logger.debug("No pending messages in queue")
            return result

        logger.info(
            "Processing message batch",
            extra_data={"count": len(messages), "batch_size": batch_size}
        )

        # A rollback expires every loaded row, so only ids are carried over
        message_ids = [message.id for message in messages]
        for message_id in message_ids:
            await self._process_message(message_id, result)

        logger.info(
            "Queue batch complete",
            extra_data={
                "processed": result.processed,
                "failed": result.failed,
                "skipped": result.skipped,
            }
        )
        return result

    async def _process_message(self, message_id: str, result: ProcessQueueResult) -> None:
        channel_name: str | None = None
        recipient: str | None = None
        try:
            if not await self.queue.claim_message(message_id):
                # Another worker owns this message
                logger.debug("Message already claimed", extra_data={"message_id": message_id})
                result.skipped += 1
                return

            message = await self.queue.get_message(message_id)
            # Read before a rollback can expire the instance
            channel_name = message.channel
            recipient = message.recipient

            try:
                channel = MessageChannel(channel_name)
            except ValueError:
                await self.queue.mark_message_failed(
                    message_id, f"Unknown channel: {channel_name}", should_retry=False
                )
                result.skipped += 1
                return

            outcome = await self._dispatch(channel, message)

            if outcome.success:
                await self.queue.mark_message_sent(message_id, outcome.provider_message_id)
                result.processed += 1
                return

            error = outcome.error or f"{channel.value} send failed"
            await self.queue.mark_message_failed(message_id, error, should_retry=outcome.retryable)
            result.failed += 1
            result.errors.append({"message_id": message_id, "error": error})

        except Exception as e:
            logger.error(
                "Error processing message",
                extra_data={
                    "message_id": message_id,
                    "channel": channel_name,
                    "recipient": mask_recipient(channel_name, recipient),
                    "error": str(e),
                },
                exc_info=True
            )
            await self._record_unexpected_failure(message_id, str(e))
            result.failed += 1
            result.errors.append({"message_id": message_id, "error": str(e)})

    async def _record_unexpected_failure(self, message_id: str, error: str) -> None:
        try:
            await self.db.rollback()
            await self.queue.mark_message_failed(message_id, error)
        except Exception as e:
            # The row stays in processing and shows up in the queue stats
            logger.error(
                "Could not record message failure",
                extra_data={"message_id": message_id, "error": str(e)},
                exc_info=True
            )

    async def _dispatch(self, channel: MessageChannel, message: QueuedMessage) -> _DispatchOutcome:
        if channel == MessageChannel.EMAIL:
            response = await self.email_provider.send(
                EmailSendParams(
                    to=message.recipient_email,
                    subject=message.subject,
                    html=message.body,
                    tags=[
                        {"name": "template_key", "value": message.template_key},
                        {"name": "recipient_type", "value": message.recipient_type},
                    ],
                    metadata=message.message_metadata or {},
                )
            )
            return self._from_provider(response)

        if channel == MessageChannel.SMS:
            response = await self.sms_provider.send(
                SMSSendParams(
                    to=message.recipient_phone,
                    body=message.body,
                    metadata=message.message_metadata or {},
                )
            )
            return self._from_provider(response)

        write = await self.inbox_writer.create_inbox_message(
            InboxMessageParams(
                user_type=message.recipient_type,
                user_id=message.recipient_id,
                message_type=message.template_key,
                title=message.inbox_title or message.template_key,
                body=message.body,
                action_url=message.inbox_action_url,
                action_label=message.inbox_action_label,
                icon=message.inbox_icon,
                metadata=message.message_metadata or {},
            )
        )
        if write.error:
            return _DispatchOutcome(success=False, error=write.error)
        return _DispatchOutcome(success=True, provider_message_id=str(write.data.id))

    @staticmethod
    def _from_provider(response: ProviderResponse) -> _DispatchOutcome:
        return _DispatchOutcome(
            success=response.success,
            provider_message_id=response.message_id,
            error=response.error,
            retryable=response.retryable,
        )

    async def get_queue_stats(self) -> QueueStats:
        return await self.queue.get_queue_stats()
