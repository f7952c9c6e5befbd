"""
Delivery providers
"""
from notifier.domain.services.providers.base_provider import BaseProvider, ProviderResponse
from notifier.domain.services.providers.email_provider import (
    EmailAddress,
    EmailProvider,
    EmailSendParams,
)
from notifier.domain.services.providers.sms_provider import SMSProvider, SMSSendParams

__all__ = [
    "BaseProvider",
    "ProviderResponse",
    "EmailAddress",
    "EmailProvider",
    "EmailSendParams",
    "SMSProvider",
    "SMSSendParams",
]
