"""Error types raised by the scheduling services."""

from dataclasses import dataclass


class SchedulingError(Exception):
    """Base class for scheduling failures."""


class NotFound(SchedulingError):
    """A referenced record does not exist."""


class SlotNotFound(NotFound):
    def __init__(self, slot_id: int):
        super().__init__(f"Slot {slot_id} not found.")
        self.slot_id = slot_id


class AppointmentNotFound(NotFound):
    def __init__(self, appointment_id: int | str):
        super().__init__(f"Appointment {appointment_id} not found.")
        self.appointment_id = appointment_id


class ScheduleNotFound(NotFound):
    def __init__(self, schedule_id: int):
        super().__init__(f"Schedule {schedule_id} not found.")
        self.schedule_id = schedule_id


class TransactionConflict(SchedulingError):
    """The slot lock could not be acquired in time, or the transaction was serialized out."""


class IntegrityViolation(SchedulingError):
    """A uniqueness or consistency constraint was violated."""


class InvalidTransition(SchedulingError):
    """An appointment status change is not allowed from the current status."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move appointment from '{current}' to '{requested}'.")
        self.current = current
        self.requested = requested


class ScheduleInUse(SchedulingError):
    """A schedule template still owns booked slots."""


@dataclass(frozen=True)
class Unavailable:
    """Expected booking outcome when the slot is already taken."""

    reason: str = "slot unavailable"

    def __bool__(self) -> bool:
        return False


class AppointmentCodeCollision(IntegrityViolation):
    """A freshly generated appointment code already exists."""
