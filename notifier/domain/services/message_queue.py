"""
Message Queue Store - durable state of outbound messages

The queue table is the system of record for delivery state. Status changes
go through the narrow methods below so the retry invariants hold:
- retry_count <= max_retries while a row is pending or processing
- a terminally failed row has retry_count == max_retries and its
  scheduled_for is never touched again
- sent, failed and cancelled rows are terminal
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from notifier.core.config import settings
from notifier.core.exceptions import MessageNotFoundError, MessageStatusError
from notifier.core.logging import get_logger
from notifier.db.database import as_naive_utc, utcnow
from notifier.db.models.delivery_log import MessageDeliveryLog
from notifier.db.models.queued_message import (
    MessageChannel,
    MessagePriority,
    MessageStatus,
    QueuedMessage,
)

logger = get_logger(__name__)

TERMINAL_STATUSES = (MessageStatus.SENT, MessageStatus.FAILED, MessageStatus.CANCELLED)


def calculate_backoff_seconds(
    retry_count: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> int:
    """
    Calculate exponential backoff seconds with a hard upper bound.

        backoff = base_seconds * (2 ** retry_count)

    The result is capped at max_backoff_seconds and avoids computing huge
    powers when retry_count is unexpectedly large.
    """
    if retry_count < 0:
        retry_count = 0

    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0

    if base_seconds >= max_backoff_seconds:
        return max_backoff_seconds

    # 2**retry_count >= ceil(max/base) means the cap applies
    required_multiplier = (max_backoff_seconds + base_seconds - 1) // base_seconds
    if retry_count >= required_multiplier.bit_length():
        return max_backoff_seconds

    return min(base_seconds * (1 << retry_count), max_backoff_seconds)


# Higher rank is selected first
_priority_rank = case(
    *[(QueuedMessage.priority == priority, priority.rank) for priority in MessagePriority],
    else_=MessagePriority.NORMAL.rank,
)


@dataclass
class EnqueueMessage:
    """A rendered message for one channel"""
    template_key: str
    recipient_type: str
    channel: MessageChannel
    body: str
    subject: str | None = None
    recipient_id: str | None = None
    recipient_email: str | None = None
    recipient_phone: str | None = None
    inbox_title: str | None = None
    inbox_action_url: str | None = None
    inbox_action_label: str | None = None
    inbox_icon: str | None = None
    variables: dict[str, Any] = field(default_factory=dict)
    priority: MessagePriority = MessagePriority.NORMAL
    scheduled_for: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    max_retries: int | None = None


@dataclass
class QueueStats:
    total: int = 0
    pending: int = 0
    processing: int = 0
    sent: int = 0
    failed: int = 0
    cancelled: int = 0


class MessageQueueStore:
    """
    Persistence for queued messages.

    Each write commits immediately: the processor must not lose a
    "sent" mark because a later message in the batch failed.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        max_retries: int | None = None,
        retry_base_minutes: int | None = None,
        max_backoff_seconds: int | None = None,
    ):
        self.db = db
        self.max_retries = max_retries or settings.MESSAGE_MAX_RETRIES
        self.retry_base_minutes = (
            retry_base_minutes if retry_base_minutes is not None
            else settings.MESSAGE_RETRY_BASE_MINUTES
        )
        self.max_backoff_seconds = max_backoff_seconds or settings.MESSAGE_MAX_BACKOFF_SECONDS

    async def enqueue(self, message: EnqueueMessage) -> QueuedMessage:
        """Store a new pending message"""
        now = utcnow()
        row = QueuedMessage(
            template_key=message.template_key,
            recipient_type=message.recipient_type,
            recipient_id=message.recipient_id,
            recipient_email=message.recipient_email,
            recipient_phone=message.recipient_phone,
            channel=message.channel.value,
            subject=message.subject,
            body=message.body,
            inbox_title=message.inbox_title,
            inbox_action_url=message.inbox_action_url,
            inbox_action_label=message.inbox_action_label,
            inbox_icon=message.inbox_icon,
            variables=message.variables,
            status=MessageStatus.PENDING,
            priority=message.priority,
            scheduled_for=as_naive_utc(message.scheduled_for) or now,
            retry_count=0,
            max_retries=message.max_retries or self.max_retries,
            message_metadata=message.metadata,
            created_at=now,
            updated_at=now,
        )
        self.db.add(row)
        await self.db.commit()

        logger.info(
            "Message queued",
            extra_data={
                "message_id": row.id,
                "template_key": row.template_key,
                "channel": row.channel,
                "priority": row.priority.value,
            }
        )
        return row

    async def get_message(self, message_id: str) -> QueuedMessage:
        """
        Raises:
            MessageNotFoundError: If no row has this id
        """
        result = await self.db.execute(
            select(QueuedMessage)
            .where(QueuedMessage.id == message_id)
            .execution_options(populate_existing=True)
        )
        message = result.scalar_one_or_none()
        if message is None:
            raise MessageNotFoundError(message_id)
        return message

    async def get_pending_messages(self, limit: int = 100) -> list[QueuedMessage]:
        """Due pending messages, highest priority first, then oldest first"""
        result = await self.db.execute(
            select(QueuedMessage)
            .where(
                QueuedMessage.status == MessageStatus.PENDING,
                QueuedMessage.scheduled_for <= utcnow(),
            )
            .order_by(_priority_rank.desc(), QueuedMessage.created_at.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def claim_message(self, message_id: str) -> bool:
        """
        Move a pending message to processing.

        Single conditional UPDATE: of several workers holding the same row,
        exactly one gets True.
        """
        result = await self.db.execute(
            update(QueuedMessage)
            .where(
                QueuedMessage.id == message_id,
                QueuedMessage.status == MessageStatus.PENDING,
            )
            .values(status=MessageStatus.PROCESSING, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def update_message_status(self, message_id: str, **fields: Any) -> QueuedMessage:
        """Write status fields of one message and return the fresh row"""
        fields["updated_at"] = utcnow()
        result = await self.db.execute(
            update(QueuedMessage)
            .where(QueuedMessage.id == message_id)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount == 0:
            raise MessageNotFoundError(message_id)
        return await self.get_message(message_id)

    async def mark_message_sent(
        self,
        message_id: str,
        provider_message_id: str | None = None
    ) -> QueuedMessage:
        """Record a successful delivery (terminal)"""
        message = await self.update_message_status(
            message_id,
            status=MessageStatus.SENT,
            sent_at=utcnow(),
            provider_message_id=provider_message_id,
            error_message=None,
        )
        logger.info(
            "Message sent",
            extra_data={
                "message_id": message_id,
                "channel": message.channel,
                "provider_message_id": provider_message_id,
            }
        )
        return message

    async def mark_message_failed(
        self,
        message_id: str,
        error_message: str,
        should_retry: bool = True
    ) -> QueuedMessage:
        """
        Record a failed attempt.

        Schedules a retry with exponential backoff while the retry budget
        lasts, otherwise fails the message for good. ``should_retry=False``
        fails it immediately and marks the budget as used up.
        """
        message = await self.get_message(message_id)
        if message.status in TERMINAL_STATUSES:
            logger.warning(
                "Ignoring failure for finished message",
                extra_data={"message_id": message_id, "status": message.status.value}
            )
            return message

        new_retry_count = message.retry_count + 1
        now = utcnow()

        if should_retry and new_retry_count < message.max_retries:
            backoff_seconds = calculate_backoff_seconds(
                new_retry_count,
                base_seconds=self.retry_base_minutes * 60,
                max_backoff_seconds=self.max_backoff_seconds,
            )
            message = await self.update_message_status(
                message_id,
                status=MessageStatus.PENDING,
                retry_count=new_retry_count,
                error_message=error_message,
                scheduled_for=now + timedelta(seconds=backoff_seconds),
            )
            logger.warning(
                "Message failed, retry scheduled",
                extra_data={
                    "message_id": message_id,
                    "channel": message.channel,
                    "retry_count": new_retry_count,
                    "max_retries": message.max_retries,
                    "backoff_seconds": backoff_seconds,
                    "error": error_message,
                }
            )
            return message

        message = await self.update_message_status(
            message_id,
            status=MessageStatus.FAILED,
            retry_count=message.max_retries,
            error_message=error_message,
            failed_at=now,
        )
        logger.error(
            "Message failed permanently",
            extra_data={
                "message_id": message_id,
                "channel": message.channel,
                "retryable": should_retry,
                "error": error_message,
            }
        )
        return message

    async def requeue_failed_message(self, message_id: str) -> QueuedMessage:
        """
        Give a dead-lettered message a fresh retry budget.

        Raises:
            MessageStatusError: If the message is not failed
        """
        message = await self.get_message(message_id)
        if message.status != MessageStatus.FAILED:
            raise MessageStatusError(message_id, message.status.value, MessageStatus.FAILED.value)

        message = await self.update_message_status(
            message_id,
            status=MessageStatus.PENDING,
            retry_count=0,
            scheduled_for=utcnow(),
            failed_at=None,
        )
        logger.info(
            "Failed message requeued",
            extra_data={"message_id": message_id, "channel": message.channel}
        )
        return message

    async def get_queue_stats(self) -> QueueStats:
        """Count of messages per status"""
        result = await self.db.execute(
            select(QueuedMessage.status, func.count(QueuedMessage.id))
            .group_by(QueuedMessage.status)
        )
        stats = QueueStats()
        for status, count in result.all():
            setattr(stats, MessageStatus(status).value, count)
            stats.total += count
        return stats

    async def list_messages(
        self,
        status: MessageStatus | None = None,
        limit: int = 50
    ) -> list[QueuedMessage]:
        """Newest messages first, optionally filtered by status"""
        query = select(QueuedMessage).order_by(QueuedMessage.created_at.desc()).limit(limit)
        if status is not None:
            query = query.where(QueuedMessage.status == status)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def archive_sent_messages(self, older_than_days: int = 7) -> int:
        """
        Move finished messages into the delivery log.

        Returns:
            Number of archived messages
        """
        cutoff = utcnow() - timedelta(days=older_than_days)
        result = await self.db.execute(
            select(QueuedMessage).where(
                QueuedMessage.status.in_(TERMINAL_STATUSES),
                or_(
                    QueuedMessage.sent_at < cutoff,
                    QueuedMessage.failed_at < cutoff,
                    and_(
                        QueuedMessage.status == MessageStatus.CANCELLED,
                        QueuedMessage.updated_at < cutoff,
                    ),
                ),
            )
        )
        messages = list(result.scalars().all())
        if not messages:
            return 0

        archived_at = utcnow()
        for message in messages:
            self.db.add(
                MessageDeliveryLog(
                    message_id=message.id,
                    template_key=message.template_key,
                    recipient_type=message.recipient_type,
                    recipient_id=message.recipient_id,
                    recipient_email=message.recipient_email,
                    recipient_phone=message.recipient_phone,
                    channel=message.channel,
                    status=message.status.value,
                    retry_count=message.retry_count,
                    sent_at=message.sent_at,
                    failed_at=message.failed_at,
                    provider_message_id=message.provider_message_id,
                    error_message=message.error_message,
                    message_metadata=message.message_metadata or {},
                    created_at=message.created_at,
                    archived_at=archived_at,
                )
            )

        await self.db.execute(
            delete(QueuedMessage)
            .where(QueuedMessage.id.in_([m.id for m in messages]))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        logger.info(
            "Archived finished messages",
            extra_data={"count": len(messages), "older_than_days": older_than_days}
        )
        return len(messages)

    async def cleanup_old_delivery_logs(self, older_than_days: int = 90) -> int:
        """
        Delete delivery log entries past the retention window.

        Returns:
            Number of deleted entries
        """
        cutoff = utcnow() - timedelta(days=older_than_days)
        result = await self.db.execute(
            delete(MessageDeliveryLog)
            .where(MessageDeliveryLog.archived_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        logger.info(
            "Deleted old delivery logs",
            extra_data={"count": result.rowcount, "older_than_days": older_than_days}
        )
        return result.rowcount
