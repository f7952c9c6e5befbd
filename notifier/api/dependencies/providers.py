"""
Provider dependencies for the API.

Overridden in tests through app.dependency_overrides.
"""
from notifier.domain.services.providers.email_provider import EmailProvider
from notifier.domain.services.providers.sms_provider import SMSProvider


def get_email_provider() -> EmailProvider:
    return EmailProvider()


def get_sms_provider() -> SMSProvider:
    return SMSProvider()
