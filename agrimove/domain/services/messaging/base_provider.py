"""
Messaging provider interface.

Business code (the notifier) depends on this interface only; concrete
providers own HTTP, retries, the circuit breaker and phone formatting.
"""
from __future__ import annotations

from abc import ABC, abstractmethod


class BaseWhatsAppProvider(ABC):
    """Outbound WhatsApp text delivery"""

    @abstractmethod
    async def send_text(self, to: str, text: str) -> None:
        """
        Send a text message.

        Args:
            to: Recipient phone number in any accepted format.
            text: Message body, sent as-is.

        Raises:
            WhatsAppError: When delivery fails after retries.
            CircuitBreakerOpenError: When the provider is short-circuited.
        """

    @abstractmethod
    def normalize_phone(self, phone: str) -> str:
        """Recipient number in the form the provider expects"""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """False when credentials are missing or placeholders; nothing is sent then"""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Name used in logs and diagnostics"""
