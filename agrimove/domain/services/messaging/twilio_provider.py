"""
Twilio WhatsApp provider over the Twilio REST Messages API.

POST {TWILIO_API_BASE_URL}/2010-04-01/Accounts/{sid}/Messages.json with
basic auth and form fields From/To/Body, both numbers carrying the
``whatsapp:`` prefix.
"""
from __future__ import annotations

import asyncio
from typing import Optional

import httpx

from agrimove.core.circuit_breaker import CircuitBreaker
from agrimove.core.config import settings
from agrimove.core.exceptions import WhatsAppError
from agrimove.core.logging import get_logger
from agrimove.core.validation import PhoneNumberValidator
from agrimove.domain.services.messaging.base_provider import BaseWhatsAppProvider

logger = get_logger(__name__)

# Values people leave in .env files before they have real credentials
PLACEHOLDER_CREDENTIALS = {"placeholder", "changeme", "your_account_sid", "xxx"}


class TwilioWhatsAppProvider(BaseWhatsAppProvider):
    """WhatsApp delivery through Twilio with retry and circuit breaker"""

    def __init__(
        self,
        circuit_breaker: CircuitBreaker,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        api_base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        backoff_base_seconds: float = 1.0,
    ) -> None:
        self._circuit_breaker = circuit_breaker
        self._account_sid = account_sid if account_sid is not None else settings.TWILIO_ACCOUNT_SID
        self._auth_token = auth_token if auth_token is not None else settings.TWILIO_AUTH_TOKEN
        self._from_number = from_number if from_number is not None else settings.TWILIO_PHONE_NUMBER
        self._api_base_url = (api_base_url or settings.TWILIO_API_BASE_URL).rstrip("/")
        self._transport = transport
        self._backoff_base = backoff_base_seconds
        self._max_retries = settings.WHATSAPP_MAX_RETRIES
        self._transient_status_codes = {
            int(code.strip())
            for code in settings.WHATSAPP_TRANSIENT_STATUS_CODES.split(",")
            if code.strip()
        }

    @property
    def provider_name(self) -> str:
        return "twilio"

    @property
    def is_configured(self) -> bool:
        sid = (self._account_sid or "").strip()
        if not sid or not self._auth_token or not self._from_number:
            return False
        return sid.lower() not in PLACEHOLDER_CREDENTIALS and sid.startswith("AC")

    @property
    def messages_url(self) -> str:
        return f"{self._api_base_url}/2010-04-01/Accounts/{self._account_sid}/Messages.json"

    def normalize_phone(self, phone: str) -> str:
        return PhoneNumberValidator.normalize(phone)

    def _backoff(self, attempt: int) -> float:
        return self._backoff_base * (2 ** attempt)

    async def _request_with_retry(self, payload: dict[str, str]) -> None:
        """POST one message, retrying transient failures with exponential backoff"""
        phone_masked = PhoneNumberValidator.mask(payload.get("To", ""))
        last_attempt = self._max_retries - 1

        async with httpx.AsyncClient(
            timeout=30.0,
            auth=(self._account_sid or "", self._auth_token or ""),
            transport=self._transport,
        ) as client:
            for attempt in range(self._max_retries):
                try:
                    response = await client.post(self.messages_url, data=payload)
                except httpx.TimeoutException:
                    if attempt < last_attempt:
                        logger.warning(
                            "Twilio request timed out, retrying",
                            extra_data={"phone": phone_masked, "attempt": attempt + 1},
                        )
                        await asyncio.sleep(self._backoff(attempt))
                        continue
                    raise WhatsAppError(
                        message="Twilio request timed out after retries",
                        details={"timeout": True, "attempts": self._max_retries},
                    )
                except httpx.RequestError as exc:
                    if attempt < last_attempt:
                        logger.warning(
                            "Network error calling Twilio, retrying",
                            extra_data={
                                "phone": phone_masked,
                                "error": str(exc),
                                "attempt": attempt + 1,
                            },
                        )
                        await asyncio.sleep(self._backoff(attempt))
                        continue
                    raise WhatsAppError(
                        message=f"Twilio network error: {exc}",
                        details={"network_error": True, "attempts": self._max_retries},
                    )

                if response.status_code in (200, 201):
                    return

                if response.status_code in self._transient_status_codes and attempt < last_attempt:
                    backoff = self._backoff(attempt)
                    logger.warning(
                        "Transient Twilio error, retrying",
                        extra_data={
                            "phone": phone_masked,
                            "status_code": response.status_code,
                            "attempt": attempt + 1,
                            "max_retries": self._max_retries,
                            "backoff_seconds": backoff,
                        },
                    )
                    await asyncio.sleep(backoff)
                    continue

                raise WhatsAppError.from_response("send", response)

    async def send_text(self, to: str, text: str) -> None:
        payload = {
            "From": f"whatsapp:{self.normalize_phone(self._from_number or '')}",
            "To": f"whatsapp:{self.normalize_phone(to)}",
            "Body": text,
        }
        await self._circuit_breaker.execute(self._request_with_retry, payload)
