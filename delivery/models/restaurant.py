from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String, func
from .base import Base


class Restaurant(Base):
    __tablename__ = "restaurant"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    owner_id = Column(String(36), nullable=False)
    phone = Column(String(32), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    delivery_fee = Column(Numeric(12, 2), nullable=False, default=0)
    estimated_delivery_time = Column(Integer, nullable=False, default=30)  # minutes
    created_at = Column(DateTime, nullable=False, server_default=func.now())
