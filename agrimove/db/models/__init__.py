"""
Database Models
"""
from agrimove.db.models.user import User, UserRole
from agrimove.db.models.produce import Produce, ProduceStatus
from agrimove.db.models.farm import Farm
from agrimove.db.models.order import Order, OrderItem, OrderStatus

__all__ = [
    "User",
    "UserRole",
    "Produce",
    "ProduceStatus",
    "Farm",
    "Order",
    "OrderItem",
    "OrderStatus",
]
