"""Processed payment webhook events, used to drop redeliveries."""
from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func
from .base import Base


class ProcessedWebhookEvent(Base):
    __tablename__ = "processed_webhook_event"

    event_id = Column(String(128), primary_key=True)
    event_type = Column(String(64), nullable=False)
    processed_at = Column(DateTime, nullable=False, default=func.now())
