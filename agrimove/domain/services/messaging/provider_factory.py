"""
Provider factory: the process-wide WhatsApp provider built from settings.
"""
from __future__ import annotations

import threading

from agrimove.core.circuit_breaker import get_whatsapp_circuit_breaker
from agrimove.core.logging import get_logger
from agrimove.domain.services.messaging.base_provider import BaseWhatsAppProvider

logger = get_logger(__name__)

_provider: BaseWhatsAppProvider | None = None
_lock = threading.Lock()


def get_whatsapp_provider() -> BaseWhatsAppProvider:
    """Lazily create the Twilio provider"""
    global _provider
    if _provider is None:
        with _lock:
            if _provider is None:
                from agrimove.domain.services.messaging.twilio_provider import TwilioWhatsAppProvider

                _provider = TwilioWhatsAppProvider(circuit_breaker=get_whatsapp_circuit_breaker())
                logger.info(
                    "WhatsApp provider initialized",
                    extra_data={
                        "provider": _provider.provider_name,
                        "configured": _provider.is_configured,
                    },
                )
    return _provider


def set_whatsapp_provider(provider: BaseWhatsAppProvider | None) -> None:
    """Install a specific provider (tests, alternative backends)"""
    global _provider
    with _lock:
        _provider = provider


def reset_providers() -> None:
    """Forget the cached provider; for tests"""
    set_whatsapp_provider(None)
