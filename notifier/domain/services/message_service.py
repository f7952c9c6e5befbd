"""
Message Service - entry point for sending templated messages

send_message() looks up the template, renders each enabled channel and
queues one row per channel. Channels are independent: a missing phone
number stops the SMS but not the email or inbox message of the same event.
Nothing is sent here; the queue processor delivers the rows later.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from notifier.core.config import settings
from notifier.core.exceptions import (
    RecipientTypeNotAllowedError,
    TemplateNotFoundError,
    TemplateRenderError,
)
from notifier.core.logging import get_logger
from notifier.db.database import as_naive_utc
from notifier.db.models.message_template import MessageTemplate
from notifier.db.models.queued_message import MessageChannel, MessagePriority
from notifier.domain.services.message_queue import EnqueueMessage, MessageQueueStore
from notifier.domain.services.providers.base_provider import ProviderResponse
from notifier.domain.services.providers.email_provider import EmailProvider, EmailSendParams
from notifier.domain.services.providers.sms_provider import SMSProvider, SMSSendParams
from notifier.domain.services.template_engine import TemplateEngine
from notifier.domain.services.template_repository import TemplateRepository

logger = get_logger(__name__)


class SendMessageParams(BaseModel):
    """Request to send a templated message to one recipient"""
    template_key: str
    recipient_type: str
    recipient_id: str | None = None
    recipient_email: str | None = None
    recipient_phone: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)
    priority: MessagePriority | None = None
    scheduled_for: datetime | None = None
    metadata: dict[str, Any] | None = None

    @field_validator("scheduled_for")
    @classmethod
    def _scheduled_for_utc(cls, value: datetime | None) -> datetime | None:
        return as_naive_utc(value)


@dataclass
class SendMessageResult:
    success: bool
    message_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class _RenderedChannel:
    body: str
    subject: str | None = None
    title: str | None = None


class MessageService:
    """Template lookup, rendering and queueing"""

    def __init__(
        self,
        db: AsyncSession,
        *,
        template_engine: TemplateEngine | None = None,
        template_repository: TemplateRepository | None = None,
        queue: MessageQueueStore | None = None,
        email_provider: EmailProvider | None = None,
        sms_provider: SMSProvider | None = None,
    ):
        self.db = db
        self.template_engine = template_engine or TemplateEngine()
        self.templates = template_repository or TemplateRepository(db)
        self.queue = queue or MessageQueueStore(db)
        self._email_provider = email_provider
        self._sms_provider = sms_provider

    @property
    def email_provider(self) -> EmailProvider:
        if self._email_provider is None:
            self._email_provider = EmailProvider()
        return self._email_provider

    @property
    def sms_provider(self) -> SMSProvider:
        if self._sms_provider is None:
            self._sms_provider = SMSProvider()
        return self._sms_provider

    async def send_message(self, params: SendMessageParams) -> SendMessageResult:
        """
        Queue one message per channel of the template.

        Returns a result instead of raising: ``success`` is True when at
        least one channel was queued, ``errors`` lists what went wrong for
        the others.
        """
        try:
            template = await self._get_template(params)
        except (TemplateNotFoundError, RecipientTypeNotAllowedError) as e:
            logger.warning(
                "Send message rejected",
                extra_data={
                    "template_key": params.template_key,
                    "recipient_type": params.recipient_type,
                    "error": e.message,
                }
            )
            return SendMessageResult(success=False, errors=[e.message])

        self._warn_missing_variables(template, params.variables)

        message_ids: list[str] = []
        errors: list[str] = []

        for channel_name in template.channels or []:
            try:
                channel = MessageChannel(channel_name)
            except ValueError:
                logger.warning(
                    "Template lists unsupported channel",
                    extra_data={"template_key": template.template_key, "channel": channel_name}
                )
                continue

            try:
                rendered = self._render_channel(template, channel, params.variables)
            except TemplateRenderError as e:
                errors.append(f"Channel {channel.value} error: {e.message}")
                continue
            if rendered is None:
                # Channel listed without a body template
                continue

            recipient_error = self._check_recipient(channel, params)
            if recipient_error:
                errors.append(recipient_error)
                continue

            try:
                action_url = None
                if channel == MessageChannel.INBOX and template.inbox_action_url:
                    action_url = self.template_engine.render(
                        template.inbox_action_url, params.variables
                    )
            except TemplateRenderError as e:
                errors.append(f"Channel {channel.value} error: {e.message}")
                continue

            try:
                queued = await self.queue.enqueue(
                    EnqueueMessage(
                        template_key=template.template_key,
                        recipient_type=params.recipient_type,
                        recipient_id=params.recipient_id,
                        recipient_email=params.recipient_email,
                        recipient_phone=params.recipient_phone,
                        channel=channel,
                        subject=rendered.subject,
                        body=rendered.body,
                        inbox_title=rendered.title,
                        inbox_action_url=action_url,
                        inbox_action_label=(
                            template.inbox_action_label if channel == MessageChannel.INBOX else None
                        ),
                        inbox_icon=template.inbox_icon if channel == MessageChannel.INBOX else None,
                        variables=params.variables,
                        priority=params.priority or MessagePriority(template.priority),
                        scheduled_for=params.scheduled_for,
                        metadata=params.metadata or {},
                    )
                )
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(
                    "Failed to enqueue message",
                    extra_data={
                        "template_key": template.template_key,
                        "channel": channel.value,
                        "error": str(e),
                    },
                    exc_info=True
                )
                errors.append(f"Failed to enqueue {channel.value} message: {e}")
                continue

            message_ids.append(queued.id)

        logger.info(
            "Send message completed",
            extra_data={
                "template_key": params.template_key,
                "recipient_type": params.recipient_type,
                "queued": len(message_ids),
                "errors": len(errors),
            }
        )
        return SendMessageResult(
            success=len(message_ids) > 0,
            message_ids=message_ids,
            errors=errors,
        )

    async def _get_template(self, params: SendMessageParams) -> MessageTemplate:
        template = await self.templates.get_active_template(params.template_key)
        if template is None:
            raise TemplateNotFoundError(params.template_key)
        if not template.allows_user_type(params.recipient_type):
            raise RecipientTypeNotAllowedError(params.template_key, params.recipient_type)
        return template

    def _warn_missing_variables(self, template: MessageTemplate, variables: dict[str, Any]) -> None:
        required = template.required_variables
        if not required:
            return
        validation = self.template_engine.validate_variables("", variables, required_vars=required)
        if not validation.valid:
            logger.warning(
                "Template variables missing, rendering them empty",
                extra_data={"template_key": template.template_key, "missing": validation.missing}
            )

    def _render_channel(
        self,
        template: MessageTemplate,
        channel: MessageChannel,
        variables: dict[str, Any],
    ) -> _RenderedChannel | None:
        """Render the fields of one channel, None if the channel has no body template"""
        render = self.template_engine.render

        if channel == MessageChannel.EMAIL:
            if not template.email_body_template:
                return None
            return _RenderedChannel(
                body=render(template.email_body_template, variables, html=True),
                subject=(
                    render(template.email_subject_template, variables)
                    if template.email_subject_template else None
                ),
            )

        if channel == MessageChannel.SMS:
            if not template.sms_body_template:
                return None
            return _RenderedChannel(body=render(template.sms_body_template, variables))

        if not template.inbox_body_template:
            return None
        return _RenderedChannel(
            body=render(template.inbox_body_template, variables),
            title=(
                render(template.inbox_title_template, variables)
                if template.inbox_title_template else None
            ),
        )

    @staticmethod
    def _check_recipient(channel: MessageChannel, params: SendMessageParams) -> str | None:
        if channel == MessageChannel.EMAIL and not params.recipient_email:
            return "Email channel requires recipientEmail"
        if channel == MessageChannel.SMS and not params.recipient_phone:
            return "SMS channel requires recipientPhone"
        if channel == MessageChannel.INBOX and not params.recipient_id:
            return "Inbox channel requires recipientId"
        return None

    async def send_message_immediate(
        self,
        channel: MessageChannel,
        body: str,
        *,
        recipient_email: str | None = None,
        recipient_phone: str | None = None,
        subject: str | None = None,
    ) -> ProviderResponse:
        """
        Send right away, bypassing the queue and its retries.

        Only for operational use (tests, urgent one-offs); email and SMS only.
        """
        if channel == MessageChannel.EMAIL and recipient_email:
            return await self.email_provider.send(
                EmailSendParams(
                    to=recipient_email,
                    subject=subject or f"Message from {settings.APP_NAME}",
                    html=body,
                )
            )
        if channel == MessageChannel.SMS and recipient_phone:
            return await self.sms_provider.send(SMSSendParams(to=recipient_phone, body=body))

        return ProviderResponse(
            success=False,
            provider="none",
            error="Invalid channel or missing recipient information",
            retryable=False,
        )
