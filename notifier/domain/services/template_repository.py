"""
Template Repository - read access to message templates

Templates are managed by the admin back-office; the pipeline only reads
them.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from notifier.db.models.message_template import MessageTemplate


class TemplateRepository:
    """Lookup of active templates by key"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_template(self, template_key: str) -> MessageTemplate | None:
        """Return the template if it exists and is active"""
        result = await self.db.execute(
            select(MessageTemplate).where(
                MessageTemplate.template_key == template_key,
                MessageTemplate.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def list_active_templates(self) -> list[MessageTemplate]:
        result = await self.db.execute(
            select(MessageTemplate)
            .where(MessageTemplate.is_active.is_(True))
            .order_by(MessageTemplate.template_key)
        )
        return list(result.scalars().all())
