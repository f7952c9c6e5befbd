"""
SMS Provider - Twilio REST API

POST {TWILIO_API_URL}/2010-04-01/Accounts/{sid}/Messages.json with basic auth.
Destination numbers must already be in E.164 form; malformed input is
rejected locally without spending provider quota.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from notifier.core.circuit_breaker import CircuitBreaker, get_sms_circuit_breaker
from notifier.core.exceptions import ConfigurationError, SMSProviderError, ValidationException
from notifier.core.logging import get_logger
from notifier.core.validation import PhoneNumberValidator
from notifier.domain.services.providers.base_provider import BaseProvider, ProviderResponse

logger = get_logger(__name__)

# 160 chars per segment, Twilio concatenates up to 10 segments
MAX_SMS_LENGTH = 1600

E164_ERROR = "Phone number must be in E.164 format (e.g., +441234567890)"


@dataclass
class SMSSendParams:
    to: str
    body: str
    from_number: str | None = None
    status_callback: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class SMSProvider(BaseProvider):
    """Transactional SMS through Twilio"""

    provider_name = "twilio"
    error_class = SMSProviderError

    def default_circuit_breaker(self) -> CircuitBreaker:
        return get_sms_circuit_breaker()

    def _error_message(self, response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("code"):
            return f"Twilio error {body['code']}: {body.get('message', '')}"
        return f"Twilio returned status {response.status_code}"

    def _credentials(self) -> tuple[str, str]:
        sid = self.config.TWILIO_ACCOUNT_SID
        token = self.config.TWILIO_AUTH_TOKEN
        if not sid or not token:
            raise ConfigurationError(
                "TWILIO_ACCOUNT_SID",
                "TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN environment variables must be set",
            )
        return sid, token

    def _messages_url(self, sid: str) -> str:
        return f"{self.config.TWILIO_API_URL}/2010-04-01/Accounts/{sid}/Messages"

    @staticmethod
    def validate_phone_number(phone_number: str | None) -> bool:
        """True if the number is in E.164 form"""
        return PhoneNumberValidator.validate(phone_number)

    @staticmethod
    def format_phone_number(phone_number: str, country_code: str = "44") -> str | None:
        """
        Convert a local number to E.164.

        Returns:
            The formatted number, or None if it still is not valid E.164
        """
        formatted = PhoneNumberValidator.normalize(phone_number, country_code)
        return formatted if PhoneNumberValidator.validate(formatted) else None

    def _validate(self, params: SMSSendParams) -> str:
        """Check the message before any network call, return the sender number"""
        if not params.to:
            raise ValidationException("Missing required parameter: to", field="to")
        if not params.body:
            raise ValidationException("Missing required parameter: body", field="body")
        if not self.validate_phone_number(params.to):
            raise ValidationException(E164_ERROR, field="to")
        if len(params.body) > MAX_SMS_LENGTH:
            raise ValidationException(
                f"SMS body exceeds maximum length of {MAX_SMS_LENGTH} characters",
                field="body",
                details={"length": len(params.body)},
            )

        from_number = params.from_number or self.config.TWILIO_PHONE_NUMBER
        if not from_number:
            raise ConfigurationError("TWILIO_PHONE_NUMBER")
        return from_number

    async def _send(self, params: SMSSendParams) -> ProviderResponse:
        from_number = self._validate(params)
        sid, token = self._credentials()

        logger.info(
            "Sending SMS via Twilio",
            extra_data={"to": PhoneNumberValidator.mask(params.to)}
        )

        response = await self._request(
            "POST",
            f"{self._messages_url(sid)}.json",
            "messages.create",
            data={
                "From": from_number,
                "To": params.to,
                "Body": params.body,
                "StatusCallback": params.status_callback or self.config.sms_status_callback_url,
            },
            auth=(sid, token),
        )
        data = self._json_body(response, "messages.create")

        logger.info(
            "SMS sent via Twilio",
            extra_data={"sid": data.get("sid"), "num_segments": data.get("num_segments")}
        )

        return ProviderResponse(
            success=True,
            provider=self.provider_name,
            message_id=data.get("sid"),
            data={
                "sid": data.get("sid"),
                "status": data.get("status"),
                "to": data.get("to"),
                "from": data.get("from"),
                "date_created": data.get("date_created"),
                "num_segments": data.get("num_segments"),
            },
        )

    async def _fetch_status(self, message_sid: str) -> ProviderResponse:
        if not message_sid:
            raise ValidationException("Missing required parameter: message_sid", field="message_sid")
        sid, token = self._credentials()

        response = await self._request(
            "GET",
            f"{self._messages_url(sid)}/{message_sid}.json",
            "messages.fetch",
            auth=(sid, token),
        )
        data = self._json_body(response, "messages.fetch")

        return ProviderResponse(
            success=True,
            provider=self.provider_name,
            message_id=message_sid,
            data={
                key: data.get(key)
                for key in (
                    "status", "to", "from", "date_created", "date_sent",
                    "date_updated", "error_code", "error_message",
                    "num_segments", "price", "price_unit",
                )
            },
        )

    async def get_sms_status(self, message_sid: str) -> ProviderResponse:
        """Delivery status of a sent message"""
        return await self._guard("status", self._fetch_status, message_sid)

    async def test_sms_configuration(self, to: str) -> ProviderResponse:
        """Send a canned SMS to check the Twilio configuration"""
        if not self.validate_phone_number(to):
            return self._failure(
                "Invalid phone number format. Must be E.164 format (e.g., +441234567890)",
                retryable=False,
            )
        return await self.send(
            SMSSendParams(
                to=to,
                body=f"{self.config.APP_NAME} SMS Test: Your Twilio configuration is working correctly!",
                metadata={"type": "configuration_test"},
            )
        )
