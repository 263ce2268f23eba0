from sqlalchemy import Boolean, Column, DateTime, String, func
from .base import Base


class User(Base):
    __tablename__ = "app_user"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, unique=True)
    phone = Column(String(32), nullable=True)
    role = Column(String(32), nullable=False, default="customer")  # customer/restaurant_owner/delivery_driver/admin
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
