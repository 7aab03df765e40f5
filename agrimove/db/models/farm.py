"""
Farm Model - one farm profile per farmer
"""
from sqlalchemy import Column, Integer, String, DateTime, Float, Boolean, ForeignKey, Text

from agrimove.db.database import Base
from agrimove.db.models.user import utcnow


class Farm(Base):
    __tablename__ = "farms"

    id = Column(Integer, primary_key=True, index=True)
    farmer_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    address = Column(Text, nullable=False)
    rating = Column(Float, default=0)
    total_ratings = Column(Integer, default=0)
    featured = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow)
