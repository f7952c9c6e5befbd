"""
Message Template Model - per-channel content definitions, read-only to the pipeline
"""
import enum
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, Enum as SQLEnum, JSON

from notifier.db.database import Base, utcnow
from notifier.db.models.queued_message import MessageChannel, MessagePriority, _enum_values


class UserType(str, enum.Enum):
    CUSTOMER = "customer"
    PARTNER = "partner"
    INFLUENCER = "influencer"
    ADMIN = "admin"


class MessageCategory(str, enum.Enum):
    TRANSACTIONAL = "transactional"
    OPERATIONAL = "operational"
    MARKETING = "marketing"


class MessageTemplate(Base):
    """Named template with subject/body/title strings for each enabled channel"""

    __tablename__ = "message_templates"

    id = Column(Integer, primary_key=True, index=True)
    template_key = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(
        SQLEnum(MessageCategory, name="message_category", values_callable=_enum_values),
        default=MessageCategory.TRANSACTIONAL,
        nullable=False
    )

    # e.g. ["email", "inbox"] / ["customer", "partner"]
    channels = Column(JSON, nullable=False, default=list)
    user_types = Column(JSON, nullable=False, default=list)

    # Email
    email_subject_template = Column(String(500), nullable=True)
    email_body_template = Column(Text, nullable=True)

    # SMS
    sms_body_template = Column(Text, nullable=True)

    # Inbox
    inbox_title_template = Column(String(255), nullable=True)
    inbox_body_template = Column(Text, nullable=True)
    inbox_action_url = Column(String(500), nullable=True)
    inbox_action_label = Column(String(100), nullable=True)
    inbox_icon = Column(String(50), nullable=True)

    # Variable descriptors: {"customer_name": {"type": "string", "required": true}, ...}
    variables = Column(JSON, nullable=False, default=dict)

    is_active = Column(Boolean, default=True, nullable=False)
    can_be_disabled = Column(Boolean, default=True, nullable=False)
    default_enabled = Column(Boolean, default=True, nullable=False)
    priority = Column(
        SQLEnum(MessagePriority, name="message_priority", values_callable=_enum_values),
        default=MessagePriority.NORMAL,
        nullable=False
    )

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def supports_channel(self, channel: MessageChannel) -> bool:
        return channel.value in (self.channels or [])

    def allows_user_type(self, user_type: str) -> bool:
        return user_type in (self.user_types or [])

    @property
    def required_variables(self) -> list[str]:
        """Variables flagged as required in the descriptor document"""
        return sorted(
            name for name, descriptor in (self.variables or {}).items()
            if isinstance(descriptor, dict) and descriptor.get("required")
        )
