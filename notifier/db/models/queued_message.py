"""
Queued Message Model - one outbound delivery for one channel
"""
import enum
import uuid
from sqlalchemy import Column, Integer, String, Text, DateTime, Enum as SQLEnum, JSON

from notifier.db.database import Base, utcnow


class MessageChannel(str, enum.Enum):
    EMAIL = "email"
    SMS = "sms"
    INBOX = "inbox"


class MessagePriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Numeric order used for queue selection (higher is sent first)"""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    MessagePriority.LOW: 0,
    MessagePriority.NORMAL: 1,
    MessagePriority.HIGH: 2,
    MessagePriority.CRITICAL: 3,
}


class MessageStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (MessageStatus.SENT, MessageStatus.FAILED, MessageStatus.CANCELLED)


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [e.value for e in enum_cls]


class QueuedMessage(Base):
    """Rendered message waiting for (or done with) delivery, with retry tracking"""

    __tablename__ = "message_queue"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    template_key = Column(String(100), nullable=False, index=True)

    # Recipient
    recipient_type = Column(String(20), nullable=False)
    recipient_id = Column(String(100), nullable=True)
    recipient_email = Column(String(255), nullable=True)
    recipient_phone = Column(String(20), nullable=True)

    # Plain string: rows written by other tools may carry an unknown channel
    channel = Column(String(20), nullable=False)

    # Rendered content
    subject = Column(String(500), nullable=True)
    body = Column(Text, nullable=False)
    inbox_title = Column(String(255), nullable=True)
    inbox_action_url = Column(String(500), nullable=True)
    inbox_action_label = Column(String(100), nullable=True)
    inbox_icon = Column(String(50), nullable=True)

    # Original variable bag, kept for audit/debug
    variables = Column(JSON, nullable=False, default=dict)

    status = Column(
        SQLEnum(MessageStatus, name="message_status", values_callable=_enum_values),
        default=MessageStatus.PENDING,
        nullable=False,
        index=True
    )
    priority = Column(
        SQLEnum(MessagePriority, name="message_priority", values_callable=_enum_values),
        default=MessagePriority.NORMAL,
        nullable=False
    )

    # Not eligible for processing before this time
    scheduled_for = Column(DateTime, default=utcnow, nullable=False, index=True)
    sent_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)

    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)

    error_message = Column(Text, nullable=True)
    provider_message_id = Column(String(255), nullable=True)

    message_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def recipient(self) -> str | None:
        """Address the channel delivers to"""
        if self.channel == MessageChannel.EMAIL.value:
            return self.recipient_email
        if self.channel == MessageChannel.SMS.value:
            return self.recipient_phone
        return self.recipient_id

    def __repr__(self) -> str:
        return (
            f"<QueuedMessage {self.id} {self.template_key} "
            f"channel={self.channel} status={self.status}>"
        )
