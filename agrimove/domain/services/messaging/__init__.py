"""
WhatsApp messaging providers

The notifier talks to BaseWhatsAppProvider; the factory decides which
concrete provider backs it.
"""
from agrimove.domain.services.messaging.base_provider import BaseWhatsAppProvider
from agrimove.domain.services.messaging.provider_factory import (
    get_whatsapp_provider,
    reset_providers,
    set_whatsapp_provider,
)

__all__ = [
    "BaseWhatsAppProvider",
    "get_whatsapp_provider",
    "reset_providers",
    "set_whatsapp_provider",
]
