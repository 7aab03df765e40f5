"""
Input Validation Utilities

Normalization of inbound identifiers and text coming from the USSD and
WhatsApp gateways:
- Phone number validation, normalization and masking for logs
- Text sanitization before input reaches the state machine
"""
import re


class ValidationPatterns:
    """Regex patterns for validation"""

    # E.164: leading + then 7 to 15 digits
    PHONE_INTERNATIONAL = re.compile(r"^\+[1-9]\d{6,14}$")

    # Local/national numbers some USSD gateways send without a country code
    PHONE_LOCAL = re.compile(r"^0\d{8,11}$")

    # Control characters other than tab/newline
    CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

    WHATSAPP_PREFIX = "whatsapp:"


class PhoneNumberValidator:
    """Phone number validation and normalization"""

    @staticmethod
    def strip_channel_prefix(phone: str) -> str:
        """Drop the ``whatsapp:`` address prefix Twilio puts on From/To"""
        phone = (phone or "").strip()
        if phone.lower().startswith(ValidationPatterns.WHATSAPP_PREFIX):
            return phone[len(ValidationPatterns.WHATSAPP_PREFIX):].strip()
        return phone

    @staticmethod
    def validate(phone: str, allow_local: bool = True) -> bool:
        """
        Validate phone number format.

        Args:
            phone: Phone number to validate
            allow_local: Accept national numbers starting with 0

        Returns:
            True if valid, False otherwise
        """
        if not phone:
            return False

        cleaned = re.sub(r"[\s\-()]", "", PhoneNumberValidator.strip_channel_prefix(phone))

        if ValidationPatterns.PHONE_INTERNATIONAL.match(cleaned):
            return True

        return allow_local and bool(ValidationPatterns.PHONE_LOCAL.match(cleaned))

    @staticmethod
    def normalize(phone: str) -> str:
        """
        Normalize a phone number to the form user records are stored under.

        Removes the WhatsApp prefix, spaces, dashes and parentheses; a bare
        international number (digits only, no leading 0) gains a ``+``.
        National numbers are kept as-is since the country is unknown here.
        """
        cleaned = PhoneNumberValidator.strip_channel_prefix(phone)
        cleaned = re.sub(r"[^\d+]", "", cleaned)

        if cleaned and not cleaned.startswith(("+", "0")):
            cleaned = "+" + cleaned

        return cleaned

    @staticmethod
    def mask(phone: str) -> str:
        """
        Mask phone number for logging (privacy).

        Returns:
            Masked phone number (e.g. +25470012****)
        """
        if not phone or len(phone) < 4:
            return "****"
        return phone[:-4] + "****"


class TextSanitizer:
    """Text sanitization for inbound messages"""

    @staticmethod
    def sanitize(text: str | None, max_length: int = 1000) -> str:
        """
        Clean one line of user input before it reaches the state machine.

        Trims whitespace, enforces max length and removes control characters.
        """
        if not text:
            return ""

        sanitized = ValidationPatterns.CONTROL_CHARS.sub("", text).strip()
        sanitized = re.sub(r" +", " ", sanitized)
        return sanitized[:max_length]
