"""
Property-based tests with hypothesis.

Invariants checked:
1. Template rendering - literal text passes through, rendering is deterministic
2. Retry backoff - bounded and non-decreasing
3. Phone numbers - normalization produces E.164, masking hides the tail
"""
import pytest
from hypothesis import given, assume, settings as h_settings
from hypothesis.strategies import (
    characters,
    composite,
    dictionaries,
    from_regex,
    integers,
    sampled_from,
    text,
)

from notifier.core.validation import PhoneNumberValidator
from notifier.domain.services.message_queue import calculate_backoff_seconds
from notifier.domain.services.template_engine import TemplateEngine, currency


# ============================================================================
# Strategies
# ============================================================================

# Text without template syntax; "\r" is excluded because the lexer normalizes newlines
LITERAL_TEXT = text(
    alphabet=characters(blacklist_characters="{}%#\r", blacklist_categories=("Cs",)),
    max_size=200,
)

VARIABLE_NAMES = from_regex(r"[a-z][a-z_]{0,15}", fullmatch=True)

JINJA_KEYWORDS = {"and", "or", "not", "in", "is", "if", "else", "true", "false", "none"}

VARIABLE_VALUES = dictionaries(
    keys=VARIABLE_NAMES,
    values=text(max_size=30),
    max_size=5,
)


@composite
def uk_mobile_numbers(draw):
    """Local UK mobile numbers in the notations people actually type"""
    digits = draw(from_regex(r"7[0-9]{9}", fullmatch=True))
    separator = draw(sampled_from(["", " ", "-"]))
    prefix = draw(sampled_from(["0", "+44", "0044", "44"]))
    return f"{prefix}{digits[:4]}{separator}{digits[4:]}"


# ============================================================================
# Template rendering
# ============================================================================


class TestTemplateRenderingProperties:

    @pytest.mark.unit
    @given(source=LITERAL_TEXT, variables=VARIABLE_VALUES)
    def test_literal_text_renders_unchanged(self, source: str, variables: dict):
        assert TemplateEngine().render(source, variables) == source

    @pytest.mark.unit
    @given(name=VARIABLE_NAMES, variables=VARIABLE_VALUES)
    @h_settings(max_examples=50)
    def test_rendering_is_deterministic(self, name: str, variables: dict):
        engine = TemplateEngine()
        assume(name not in JINJA_KEYWORDS)
        assume(name not in engine._env.globals)
        source = f"Hi {{{{ {name} }}}}!"

        first = engine.render(source, variables)
        second = engine.render(source, variables)

        assert first == second
        assert first == f"Hi {variables.get(name, '')}!"

    @pytest.mark.unit
    @given(amount=integers(min_value=0, max_value=10**9))
    def test_currency_formats_minor_units(self, amount: int):
        assert currency(amount, "GBP") == f"£{amount // 100}.{amount % 100:02d}"


# ============================================================================
# Retry backoff
# ============================================================================


class TestBackoffProperties:

    @pytest.mark.unit
    @given(
        retry_count=integers(min_value=-5, max_value=10_000),
        base_seconds=integers(min_value=1, max_value=3600),
        max_backoff_seconds=integers(min_value=1, max_value=86400),
    )
    def test_backoff_is_bounded(self, retry_count: int, base_seconds: int, max_backoff_seconds: int):
        backoff = calculate_backoff_seconds(
            retry_count,
            base_seconds=base_seconds,
            max_backoff_seconds=max_backoff_seconds,
        )

        assert 0 < backoff <= max_backoff_seconds
        assert backoff >= min(base_seconds, max_backoff_seconds)

    @pytest.mark.unit
    @given(
        retry_count=integers(min_value=0, max_value=200),
        base_seconds=integers(min_value=1, max_value=3600),
        max_backoff_seconds=integers(min_value=1, max_value=86400),
    )
    def test_backoff_never_decreases(self, retry_count: int, base_seconds: int, max_backoff_seconds: int):
        current = calculate_backoff_seconds(
            retry_count, base_seconds=base_seconds, max_backoff_seconds=max_backoff_seconds
        )
        following = calculate_backoff_seconds(
            retry_count + 1, base_seconds=base_seconds, max_backoff_seconds=max_backoff_seconds
        )

        assert following >= current


# ============================================================================
# Phone numbers
# ============================================================================


class TestPhoneNumberProperties:

    @pytest.mark.unit
    @given(phone=uk_mobile_numbers())
    def test_normalized_number_is_e164(self, phone: str):
        normalized = PhoneNumberValidator.normalize(phone)

        assert PhoneNumberValidator.validate(normalized)
        assert normalized.startswith("+447")
        assert len(normalized) == 13

    @pytest.mark.unit
    @given(phone=from_regex(r"\+[1-9][0-9]{6,14}", fullmatch=True))
    def test_mask_hides_last_four_digits(self, phone: str):
        masked = PhoneNumberValidator.mask(phone)

        assert masked.endswith("****")
        assert masked[:-4] == phone[:-4]
        assert len(masked) == len(phone)

    @pytest.mark.unit
    @given(phone=text(max_size=30))
    def test_validate_never_crashes(self, phone: str):
        assert PhoneNumberValidator.validate(phone) in (True, False)

    @pytest.mark.unit
    @given(
        phone=from_regex(r"\+[1-9][0-9]{6,14}", fullmatch=True),
        suffix=sampled_from(["\n", "\r\n", " ", "\t"]),
    )
    def test_trailing_whitespace_is_never_valid(self, phone: str, suffix: str):
        assert PhoneNumberValidator.validate(phone)
        assert not PhoneNumberValidator.validate(phone + suffix)
