"""
Input Validation Utilities

Recipient validation shared by the message service and the provider
adapters:
- Phone number validation (E.164) and normalization
- Email address validation
- Masking of phone numbers and emails for logging
"""
import re


class ValidationPatterns:
    """Regex patterns for validation"""

    # E.164: "+" followed by up to 15 digits, no leading zero.
    # \Z, not $: $ also matches before a trailing newline
    PHONE_E164 = re.compile(r"^\+[1-9]\d{1,14}\Z")

    # Pragmatic address check, the provider does the real validation
    EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+\Z")


class PhoneNumberValidator:
    """Phone number validation and normalization"""

    @staticmethod
    def validate(phone: str | None) -> bool:
        """
        Validate phone number format.

        The number must already be in E.164 form. No whitespace or
        punctuation is stripped here: "0207 123456" is rejected, it is not
        silently repaired.
        """
        if not phone:
            return False
        return bool(ValidationPatterns.PHONE_E164.fullmatch(phone))

    @staticmethod
    def normalize(phone: str, country_code: str = "44") -> str:
        """
        Normalize a local or international number to E.164.

        Args:
            phone: Phone number in any common notation
            country_code: Dialling code applied to numbers with a trunk "0"
                or without any country prefix

        Returns:
            Normalized phone number, e.g. "07700 900123" -> "+447700900123"
        """
        # Remove all non-digit characters except +
        cleaned = re.sub(r"[^\d+]", "", phone)

        if cleaned.startswith("+"):
            return cleaned
        if cleaned.startswith("00"):
            return "+" + cleaned[2:]
        if cleaned.startswith("0"):
            return f"+{country_code}{cleaned[1:]}"
        if cleaned.startswith(country_code):
            return "+" + cleaned
        return f"+{country_code}{cleaned}"

    @staticmethod
    def mask(phone: str | None) -> str:
        """
        Mask phone number for logging (privacy).

        Returns:
            Masked phone number (e.g., +4477009****)
        """
        if not phone or len(phone) < 4:
            return "****"
        return phone[:-4] + "****"


class EmailValidator:
    """Email address validation"""

    @staticmethod
    def validate(email: str | None) -> bool:
        if not email:
            return False
        return bool(ValidationPatterns.EMAIL.fullmatch(email.strip()))

    @staticmethod
    def mask(email: str | None) -> str:
        """Keep the first character of the local part and the domain"""
        if not email or "@" not in email:
            return "****"
        local, _, domain = email.partition("@")
        return f"{local[:1]}***@{domain}"


def mask_recipient(channel: str, recipient: str | None) -> str:
    """Mask the recipient of a queued message according to its channel"""
    if channel == "sms":
        return PhoneNumberValidator.mask(recipient)
    if channel == "email":
        return EmailValidator.mask(recipient)
    return recipient or "-"
