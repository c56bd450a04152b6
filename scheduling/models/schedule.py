"""Doctor schedule template definitions."""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Time
from scheduling.database import Base


class DoctorSchedule(Base):
    """Recurring working window a doctor's slots are generated from."""
    __tablename__ = "doctor_schedules"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_doctor_schedules_window"),
        CheckConstraint("slot_duration_minutes > 0", name="ck_doctor_schedules_duration"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(String, nullable=False, index=True)
    weekdays = Column(String, nullable=False, default="0,1,2,3,4")  # Monday = 0
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer, nullable=False, default=30)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def weekday_set(self) -> frozenset[int]:
        return frozenset(int(day) for day in (self.weekdays or "").split(",") if day.strip())
