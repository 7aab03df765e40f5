"""
Produce Model - catalog entries listed by farmers
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Text

from agrimove.db.database import Base
from agrimove.db.models.user import utcnow


class ProduceStatus(str, enum.Enum):
    ACTIVE = "active"
    OUT_OF_STOCK = "out_of_stock"
    INACTIVE = "inactive"


class Produce(Base):
    __tablename__ = "produce"

    id = Column(Integer, primary_key=True, index=True)
    farmer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    unit = Column(String(30), nullable=False)  # kg, box, piece...
    quantity = Column(Numeric(12, 3), nullable=False)  # stock on hand, in units
    category = Column(String(50), nullable=False)
    status = Column(String(20), default=ProduceStatus.ACTIVE.value, nullable=False)

    created_at = Column(DateTime, default=utcnow)

    @property
    def is_available(self) -> bool:
        """Listed and with stock left to sell"""
        return self.status == ProduceStatus.ACTIVE.value and (self.quantity or 0) > 0
