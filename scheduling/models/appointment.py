"""Appointment model definitions."""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, Date, DateTime, Index, Integer, String, text
from scheduling.database import Base

STATUS_SCHEDULED = "scheduled"
STATUS_CHECKED_IN = "checked-in"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"

APPOINTMENT_STATUSES = (STATUS_SCHEDULED, STATUS_CHECKED_IN, STATUS_COMPLETED, STATUS_CANCELLED)
ACTIVE_STATUSES = (STATUS_SCHEDULED, STATUS_CHECKED_IN)

_ACTIVE_PREDICATE = text("status IN ('scheduled', 'checked-in')")


class Appointment(Base):
    """Represents a patient-facing booking."""
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint(
            "status IN ('scheduled', 'checked-in', 'completed', 'cancelled')",
            name="ck_appointments_status",
        ),
        # At most one active appointment per doctor, date and time.
        Index(
            "uq_appointments_active_slot",
            "doctor_id",
            "appointment_date",
            "time_slot",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
    )

    id = Column(Integer, primary_key=True)
    appointment_code = Column(String, nullable=False, unique=True)
    doctor_id = Column(String, nullable=False)
    appointment_date = Column(Date, nullable=False)
    time_slot = Column(String, nullable=False)
    patient_id = Column(String, nullable=True)
    patient_name = Column(String, nullable=False)
    patient_phone = Column(String, nullable=False)
    patient_email = Column(String, nullable=True)
    symptoms = Column(String, nullable=True)
    status = Column(String, nullable=False, default=STATUS_SCHEDULED)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
