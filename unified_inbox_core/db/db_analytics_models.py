from sqlalchemy import Column, Integer, String, UniqueConstraint

from .db_base import TimestampMixin, UUIDMixin
from .db_config import Base


class AnalyticsCounters(Base, UUIDMixin, TimestampMixin):
    """Per-user usage counters; only ever changed by atomic increments."""

    __tablename__ = "analytics_counters"

    tenant_id = Column(String(100), nullable=False)
    user_id = Column(String(100), nullable=False)
    total_messages = Column(Integer, nullable=False, default=0)
    generated_responses = Column(Integer, nullable=False, default=0)
    manual_responses = Column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("tenant_id", "user_id", name="uq_analytics_owner"),)
