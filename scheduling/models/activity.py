"""Activity log and notification definitions."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from scheduling.database import Base


class ActivityLog(Base):
    """Append-only record of booking activity."""
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True)
    action = Column(String, nullable=False)
    entity_type = Column(String, nullable=False)
    entity_id = Column(String, nullable=False)
    performed_by = Column(String, nullable=False, default="OPD System")
    activity_type = Column(String, nullable=False, default="info")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class Notification(Base):
    """Queued message for a doctor or patient, delivered by an external dispatcher."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    user_role = Column(String, nullable=False)
    type = Column(String, nullable=False, default="appointment")
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    related_entity_type = Column(String, nullable=True)
    related_entity_id = Column(String, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
