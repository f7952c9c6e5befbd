"""
Email Provider - Resend REST API

POST {RESEND_API_URL}/emails with a bearer API key.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from notifier.core.circuit_breaker import CircuitBreaker, get_email_circuit_breaker
from notifier.core.exceptions import ConfigurationError, EmailProviderError, ValidationException
from notifier.core.logging import get_logger
from notifier.core.validation import EmailValidator
from notifier.domain.services.providers.base_provider import BaseProvider, ProviderResponse

logger = get_logger(__name__)


@dataclass
class EmailAddress:
    email: str
    name: str | None = None

    def formatted(self) -> str:
        return f"{self.name} <{self.email}>" if self.name else self.email


@dataclass
class EmailSendParams:
    to: str | list[str]
    subject: str
    html: str
    text: str | None = None
    from_address: EmailAddress | None = None
    reply_to: str | None = None
    # Resend tags: [{"name": "template_key", "value": "order_confirmation"}]
    tags: list[dict[str, str]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


class EmailProvider(BaseProvider):
    """Transactional email through Resend"""

    provider_name = "resend"
    error_class = EmailProviderError

    def default_circuit_breaker(self) -> CircuitBreaker:
        return get_email_circuit_breaker()

    def _error_message(self, response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = {}
        detail = body.get("message") if isinstance(body, dict) else None
        return f"Resend API error: {detail or f'status {response.status_code}'}"

    def _build_payload(self, params: EmailSendParams) -> dict[str, Any]:
        if not params.to:
            raise ValidationException("Missing required parameter: to", field="to")
        if not params.subject:
            raise ValidationException("Missing required parameter: subject", field="subject")
        if not params.html:
            raise ValidationException("Missing required parameter: html", field="html")
        if not self.config.RESEND_API_KEY:
            raise ConfigurationError("RESEND_API_KEY")

        raw = params.to if isinstance(params.to, list) else [params.to]
        recipients = [r.strip() for r in raw]
        invalid = [r for r in recipients if not EmailValidator.validate(r)]
        if invalid:
            raise ValidationException(
                f"Invalid email address: {', '.join(EmailValidator.mask(r) for r in invalid)}",
                field="to",
            )

        sender = params.from_address or EmailAddress(
            email=self.config.RESEND_FROM_EMAIL,
            name=self.config.RESEND_FROM_NAME,
        )
        payload: dict[str, Any] = {
            "from": sender.formatted(),
            "to": recipients,
            "subject": params.subject,
            "html": params.html,
            "reply_to": params.reply_to or self.config.default_reply_to,
            "tags": params.tags,
        }
        if params.text:
            payload["text"] = params.text
        return payload

    async def _send(self, params: EmailSendParams) -> ProviderResponse:
        payload = self._build_payload(params)

        logger.info(
            "Sending email via Resend",
            extra_data={
                "subject": params.subject,
                "to": [EmailValidator.mask(r) for r in payload["to"]],
            }
        )

        response = await self._request(
            "POST",
            f"{self.config.RESEND_API_URL}/emails",
            "emails.send",
            json=payload,
            headers={"Authorization": f"Bearer {self.config.RESEND_API_KEY}"},
        )
        data = self._json_body(response, "emails.send")

        logger.info(
            "Email sent via Resend",
            extra_data={"message_id": data.get("id")}
        )

        return ProviderResponse(
            success=True,
            provider=self.provider_name,
            message_id=data.get("id"),
            data=data,
        )

    async def send_batch(self, emails: list[EmailSendParams]) -> list[ProviderResponse]:
        """Send several emails one at a time, each with its own result"""
        results = []
        for email in emails:
            results.append(await self.send(email))
        return results

    async def test_email_configuration(self, to: str) -> ProviderResponse:
        """Send a canned message to check the Resend configuration"""
        app_name = self.config.APP_NAME
        return await self.send(
            EmailSendParams(
                to=to,
                subject=f"{app_name} Email Configuration Test",
                html=(
                    "<h1>Email Configuration Test</h1>"
                    "<p>This is a test email to verify your Resend configuration "
                    "is working correctly.</p>"
                    "<p>If you received this email, your email provider is "
                    "configured properly!</p>"
                    "<hr>"
                    f'<p style="color: #666; font-size: 12px;">Sent from {app_name} '
                    "Messaging System<br>Provider: Resend</p>"
                ),
                tags=[{"name": "type", "value": "configuration_test"}],
            )
        )
