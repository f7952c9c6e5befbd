"""
Database Models
"""
from notifier.db.models.queued_message import (
    QueuedMessage,
    MessageChannel,
    MessagePriority,
    MessageStatus,
)
from notifier.db.models.message_template import MessageTemplate, UserType, MessageCategory
from notifier.db.models.user_message import UserMessage
from notifier.db.models.delivery_log import MessageDeliveryLog

__all__ = [
    "QueuedMessage",
    "MessageChannel",
    "MessagePriority",
    "MessageStatus",
    "MessageTemplate",
    "UserType",
    "MessageCategory",
    "UserMessage",
    "MessageDeliveryLog",
]
