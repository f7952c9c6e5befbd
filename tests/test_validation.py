"""
Tests for Input Validation Utilities
"""
import pytest
from notifier.core.validation import (
    EmailValidator,
    PhoneNumberValidator,
    ValidationPatterns,
    mask_recipient,
)


class TestPhoneNumberValidator:
    """Tests for phone number validation"""

    @pytest.mark.unit
    @pytest.mark.parametrize("phone,expected", [
        # E.164
        ("+447700900123", True),
        ("+12025550123", True),
        ("+4412", True),
        # Not E.164
        ("07700900123", False),
        ("447700900123", False),
        ("+44 7700 900123", False),
        ("+44-7700-900123", False),
        ("+0447700900123", False),
        ("+1234567890123456", False),  # Too long
        ("+447700900123\n", False),
        ("+447700900123\n\n", False),
        ("", False),
        (None, False),
    ])
    def test_validate_e164(self, phone: str | None, expected: bool):
        """Only numbers already in E.164 form are accepted"""
        assert PhoneNumberValidator.validate(phone) == expected

    @pytest.mark.unit
    def test_normalize_phone(self):
        """Test phone number normalization"""
        # Local format to international
        assert PhoneNumberValidator.normalize("07700 900123") == "+447700900123"
        assert PhoneNumberValidator.normalize("07700-900-123") == "+447700900123"

        # International prefix
        assert PhoneNumberValidator.normalize("0033612345678") == "+33612345678"

        # Already international
        assert PhoneNumberValidator.normalize("+447700900123") == "+447700900123"

        # Other country code
        assert PhoneNumberValidator.normalize("0612345678", country_code="33") == "+33612345678"

    @pytest.mark.unit
    def test_mask_phone(self):
        """Test phone number masking for privacy"""
        assert PhoneNumberValidator.mask("+447700900123") == "+44770090****"
        assert PhoneNumberValidator.mask("123") == "****"
        assert PhoneNumberValidator.mask(None) == "****"


class TestEmailValidator:

    @pytest.mark.unit
    @pytest.mark.parametrize("email,expected", [
        ("john@example.com", True),
        ("john.doe+orders@mail.example.co.uk", True),
        (" john@example.com ", True),
        ("john@", False),
        ("john@example", False),
        ("john doe@example.com", False),
        ("john@example.com\nBcc: x@evil.test", False),
        ("", False),
        (None, False),
    ])
    def test_validate(self, email: str | None, expected: bool):
        assert EmailValidator.validate(email) == expected

    @pytest.mark.unit
    def test_mask_email(self):
        assert EmailValidator.mask("john@example.com") == "j***@example.com"
        assert EmailValidator.mask("not-an-email") == "****"


class TestMaskRecipient:

    @pytest.mark.unit
    def test_masks_by_channel(self):
        assert mask_recipient("sms", "+447700900123") == "+44770090****"
        assert mask_recipient("email", "john@example.com") == "j***@example.com"
        assert mask_recipient("inbox", "cust-1") == "cust-1"
        assert mask_recipient("inbox", None) == "-"


class TestValidationPatterns:

    @pytest.mark.unit
    def test_e164_pattern_is_anchored(self):
        assert ValidationPatterns.PHONE_E164.match("+447700900123")
        assert not ValidationPatterns.PHONE_E164.match("call +447700900123")
        assert not ValidationPatterns.PHONE_E164.match("+447700900123 ext 2")
        assert not ValidationPatterns.PHONE_E164.match("+447700900123\n")
        assert not ValidationPatterns.EMAIL.match("john@example.com\n")
