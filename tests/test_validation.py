"""
Tests for Input Validation Utilities
"""
import pytest
from agrimove.core.validation import (
    PhoneNumberValidator,
    TextSanitizer,
    ValidationPatterns
)


class TestPhoneNumberValidator:
    """Tests for phone number validation"""

    @pytest.mark.unit
    @pytest.mark.parametrize("phone,expected", [
        # International numbers
        ("+254712345678", True),
        ("+254 712 345 678", True),
        ("+254-712-345-678", True),
        ("whatsapp:+254712345678", True),
        ("+14155238886", True),
        # National numbers
        ("0712345678", True),
        ("(0712) 345-678", True),
        # Invalid numbers
        ("123", False),
        ("abcdefghij", False),
        ("", False),
        ("+25471", False),  # Too short
        ("+2547123456789012", False),  # Too long
        ("+0712345678", False),  # Country code cannot start with 0
    ])
    def test_validate_phone(self, phone: str, expected: bool):
        assert PhoneNumberValidator.validate(phone) == expected

    @pytest.mark.unit
    def test_validate_rejects_local_when_disallowed(self):
        assert PhoneNumberValidator.validate("0712345678", allow_local=False) is False
        assert PhoneNumberValidator.validate("+254712345678", allow_local=False) is True

    @pytest.mark.unit
    def test_normalize_phone(self):
        # Twilio WhatsApp address
        assert PhoneNumberValidator.normalize("whatsapp:+254712345678") == "+254712345678"
        assert PhoneNumberValidator.normalize("WhatsApp:+254712345678") == "+254712345678"

        # Bare international digits gain a plus
        assert PhoneNumberValidator.normalize("254712345678") == "+254712345678"

        # Formatting removed, national numbers left as-is
        assert PhoneNumberValidator.normalize("+254 712-345-678") == "+254712345678"
        assert PhoneNumberValidator.normalize("0712 345 678") == "0712345678"

        assert PhoneNumberValidator.normalize("") == ""

    @pytest.mark.unit
    def test_strip_channel_prefix(self):
        assert PhoneNumberValidator.strip_channel_prefix(" whatsapp:+254712345678 ") == "+254712345678"
        assert PhoneNumberValidator.strip_channel_prefix("+254712345678") == "+254712345678"
        assert PhoneNumberValidator.strip_channel_prefix(None) == ""

    @pytest.mark.unit
    def test_mask_phone(self):
        assert PhoneNumberValidator.mask("+254712345678") == "+25471234****"
        assert PhoneNumberValidator.mask("123") == "****"
        assert PhoneNumberValidator.mask("") == "****"


class TestTextSanitizer:
    """Tests for text sanitization"""

    @pytest.mark.unit
    def test_sanitize_trims_and_collapses_spaces(self):
        assert TextSanitizer.sanitize("  12  Market   Road  ") == "12 Market Road"

    @pytest.mark.unit
    def test_sanitize_preserves_menu_input(self):
        assert TextSanitizer.sanitize("1*2*3") == "1*2*3"
        assert TextSanitizer.sanitize("C") == "C"
        assert TextSanitizer.sanitize("Nyeri, Kenya #4") == "Nyeri, Kenya #4"

    @pytest.mark.unit
    def test_sanitize_enforces_max_length(self):
        assert len(TextSanitizer.sanitize("a" * 2000)) == 1000
        assert TextSanitizer.sanitize("abcdef", max_length=3) == "abc"

    @pytest.mark.unit
    def test_sanitize_empty(self):
        assert TextSanitizer.sanitize("") == ""
        assert TextSanitizer.sanitize(None) == ""

    @pytest.mark.unit
    def test_remove_control_characters(self):
        assert TextSanitizer.sanitize("1\x00\x07\x1b") == "1"
        # Newlines and tabs are kept for multi-line WhatsApp messages
        assert TextSanitizer.sanitize("line one\nline two") == "line one\nline two"

    @pytest.mark.unit
    def test_sanitize_does_not_escape_markup(self):
        assert TextSanitizer.sanitize("<b>Farm & Co</b>") == "<b>Farm & Co</b>"


class TestValidationPatterns:

    @pytest.mark.unit
    def test_international_pattern(self):
        assert ValidationPatterns.PHONE_INTERNATIONAL.match("+254712345678")
        assert not ValidationPatterns.PHONE_INTERNATIONAL.match("254712345678")

    @pytest.mark.unit
    def test_local_pattern(self):
        assert ValidationPatterns.PHONE_LOCAL.match("0712345678")
        assert not ValidationPatterns.PHONE_LOCAL.match("0712")
