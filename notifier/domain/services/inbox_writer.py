"""
Inbox Writer - stores in-app notifications

The inbox channel has no external provider: delivering a message means
inserting a UserMessage row. Retries happen at the queue level like any
other channel.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from notifier.core.logging import get_logger
from notifier.db.database import utcnow
from notifier.db.models.user_message import UserMessage

logger = get_logger(__name__)


@dataclass
class InboxMessageParams:
    user_type: str
    user_id: str
    message_type: str
    title: str
    body: str
    action_url: str | None = None
    action_label: str | None = None
    icon: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    expires_at: datetime | None = None


@dataclass
class InboxWriteResult:
    data: UserMessage | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.data is not None


class InboxWriter:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_inbox_message(self, params: InboxMessageParams) -> InboxWriteResult:
        """Insert an inbox notification; storage errors are returned, not raised"""
        message = UserMessage(
            user_type=params.user_type,
            user_id=params.user_id,
            message_type=params.message_type,
            title=params.title,
            body=params.body,
            action_url=params.action_url,
            action_label=params.action_label,
            icon=params.icon,
            message_metadata=params.metadata,
            expires_at=params.expires_at,
        )
        try:
            self.db.add(message)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Failed to create inbox message",
                extra_data={
                    "user_type": params.user_type,
                    "user_id": params.user_id,
                    "message_type": params.message_type,
                    "error": str(e),
                }
            )
            return InboxWriteResult(error=str(e))

        logger.info(
            "Inbox message created",
            extra_data={
                "inbox_message_id": message.id,
                "user_type": params.user_type,
                "message_type": params.message_type,
            }
        )
        return InboxWriteResult(data=message)

    async def get_unread_count(self, user_type: str, user_id: str) -> int:
        """Unread, unarchived and unexpired messages of one user"""
        result = await self.db.execute(
            select(func.count(UserMessage.id)).where(
                UserMessage.user_type == user_type,
                UserMessage.user_id == user_id,
                UserMessage.is_read.is_(False),
                UserMessage.is_archived.is_(False),
                or_(UserMessage.expires_at.is_(None), UserMessage.expires_at > utcnow()),
            )
        )
        return result.scalar_one()
