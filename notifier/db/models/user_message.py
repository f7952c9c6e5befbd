"""
User Message Model - in-app inbox notifications
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, JSON

from notifier.db.database import Base, utcnow


class UserMessage(Base):
    """
    Inbox notification shown in the user's notification center.

    Written once by the inbox channel; read/archive flags belong to the
    notification center.
    """

    __tablename__ = "user_messages"

    id = Column(Integer, primary_key=True, index=True)

    user_type = Column(String(20), nullable=False)
    user_id = Column(String(100), nullable=False, index=True)
    message_type = Column(String(100), nullable=False)  # template_key

    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    action_url = Column(String(500), nullable=True)
    action_label = Column(String(100), nullable=True)
    icon = Column(String(50), nullable=True)

    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime, nullable=True)
    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime, nullable=True)

    message_metadata = Column("metadata", JSON, nullable=False, default=dict)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
