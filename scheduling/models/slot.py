"""Doctor time slot definitions."""

from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Time,
    UniqueConstraint,
)

from scheduling.database import Base
from scheduling.models.appointment import Appointment  # noqa: F401
from scheduling.models.schedule import DoctorSchedule  # noqa: F401

SLOT_AVAILABLE = "available"
SLOT_BOOKED = "booked"
SLOT_STATUSES = (SLOT_AVAILABLE, SLOT_BOOKED)


class Slot(Base):
    """One bookable (doctor, date, start time) unit with exclusive ownership."""
    __tablename__ = "doctor_time_slots"
    __table_args__ = (
        UniqueConstraint("doctor_id", "slot_date", "start_time", name="uq_doctor_time_slots_key"),
        CheckConstraint("status IN ('available', 'booked')", name="ck_doctor_time_slots_status"),
        CheckConstraint(
            "(status = 'booked' AND owner_appointment_id IS NOT NULL)"
            " OR (status = 'available' AND owner_appointment_id IS NULL)",
            name="ck_doctor_time_slots_owner",
        ),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(String, nullable=False)
    schedule_id = Column(Integer, ForeignKey("doctor_schedules.id", ondelete="CASCADE"), nullable=True)
    slot_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default=SLOT_AVAILABLE)
    owner_patient_id = Column(String, nullable=True)
    owner_patient_name = Column(String, nullable=True)
    owner_appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True, unique=True)
    booked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_booked(self) -> bool:
        return self.status == SLOT_BOOKED

    @property
    def time_slot(self) -> str:
        return self.start_time.strftime("%H:%M")

    def __repr__(self) -> str:
        return f"<Slot id={self.id} doctor={self.doctor_id} {self.slot_date} {self.start_time} {self.status}>"
