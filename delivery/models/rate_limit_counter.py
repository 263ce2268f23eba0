from sqlalchemy import Column, DateTime, Integer, String
from .base import Base


class RateLimitCounter(Base):
    __tablename__ = "rate_limit_counter"

    client_key = Column(String(255), primary_key=True)
    window_started_at = Column(DateTime, nullable=False)
    count = Column(Integer, nullable=False, default=0)
