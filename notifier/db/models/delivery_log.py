"""
Message Delivery Log Model - archive of finished queue rows
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON

from notifier.db.database import Base, utcnow


class MessageDeliveryLog(Base):
    """Copy of a sent/failed/cancelled queue row, kept for the retention window"""

    __tablename__ = "message_delivery_log"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(String(36), nullable=False, index=True)
    template_key = Column(String(100), nullable=False)

    recipient_type = Column(String(20), nullable=False)
    recipient_id = Column(String(100), nullable=True)
    recipient_email = Column(String(255), nullable=True)
    recipient_phone = Column(String(20), nullable=True)

    channel = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    retry_count = Column(Integer, default=0, nullable=False)

    sent_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=True)
    provider_message_id = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    message_metadata = Column("metadata", JSON, nullable=False, default=dict)

    # created_at of the original queue row
    created_at = Column(DateTime, nullable=False)
    archived_at = Column(DateTime, default=utcnow, nullable=False, index=True)
