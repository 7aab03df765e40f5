"""
User Model - Buyers, Farmers and Drivers
"""
import enum
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float, Text

from agrimove.db.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp for DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRole(str, enum.Enum):
    BUYER = "buyer"
    FARMER = "farmer"
    DRIVER = "driver"


class User(Base):
    """Registered AgriMove user; the phone number is the messaging identity"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, nullable=False)
    phone = Column(String(20), unique=True, index=True, nullable=False)
    name = Column(String(150), nullable=False)
    role = Column(String(20), default=UserRole.BUYER.value, nullable=False)
    email = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    rating = Column(Float, default=0)
    verified = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow)

    @property
    def is_buyer(self) -> bool:
        return self.role == UserRole.BUYER.value
