from sqlalchemy import Boolean, Column, DateTime, Index, JSON, Numeric, String, func
from .base import Base


class Order(Base):
    __tablename__ = "order"

    id = Column(String(36), primary_key=True)
    order_number = Column(String(32), nullable=False, unique=True)
    customer_id = Column(String(36), nullable=False)
    restaurant_id = Column(String(36), nullable=False)
    delivery_driver_id = Column(String(36), nullable=True)
    items = Column(JSON, nullable=False)
    order_type = Column(String(16), nullable=False, default="delivery")
    status = Column(String(32), nullable=False, default="pending")
    delivery_address = Column(JSON(none_as_null=True), nullable=True)
    scheduled_delivery_time = Column(DateTime, nullable=True)
    estimated_delivery_time = Column(DateTime, nullable=True)
    actual_delivery_time = Column(DateTime, nullable=True)

    subtotal = Column(Numeric(12, 2), nullable=False)
    tax = Column(Numeric(12, 2), nullable=False)
    delivery_fee = Column(Numeric(12, 2), nullable=False, default=0)
    service_fee = Column(Numeric(12, 2), nullable=False, default=0)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    tip = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    payment_method = Column(String(16), nullable=False)
    payment_status = Column(String(16), nullable=False, default="pending")
    transaction_id = Column(String(128), nullable=True)
    payment_intent_id = Column(String(128), nullable=True, unique=True)
    paid_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    refund_amount = Column(Numeric(12, 2), nullable=True)

    tracking = Column(JSON, nullable=False)
    contact_info = Column(JSON(none_as_null=True), nullable=True)
    feedback = Column(JSON(none_as_null=True), nullable=True)
    customer_notes = Column(String(500), nullable=True)
    repeat_order = Column(Boolean, nullable=False, default=False)
    original_order_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_order_customer_created", "customer_id", "created_at"),
        Index("ix_order_restaurant_created", "restaurant_id", "created_at"),
        Index("ix_order_driver_status", "delivery_driver_id", "status"),
        Index("ix_order_status", "status"),
    )
