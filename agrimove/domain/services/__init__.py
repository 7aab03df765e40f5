"""
Domain Services
"""
from agrimove.domain.services.catalog_gateway import CatalogGateway, SqlCatalogGateway
from agrimove.domain.services.notification_service import send_message, send_order_update

__all__ = [
    "CatalogGateway",
    "SqlCatalogGateway",
    "send_message",
    "send_order_update",
]
