from datetime import date, datetime, time, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from scheduling.exceptions import SlotNotFound
from scheduling.models.appointment import ACTIVE_STATUSES, Appointment
from scheduling.models.slot import SLOT_AVAILABLE, SLOT_BOOKED, Slot

TIME_SLOT_FORMATS = ('%H:%M', '%H:%M:%S', '%I:%M %p', '%I:%M%p')


def parse_time_slot(value: str | time) -> time:
    """Accept '09:00', '09:00:00' or '9:00 AM' and return the slot start time."""
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)

    normalized = value.strip().upper()
    for time_format in TIME_SLOT_FORMATS:
        try:
            return datetime.strptime(normalized, time_format).time().replace(second=0)
        except ValueError:
            continue

    raise ValueError(f"Invalid time slot '{value}'. Use HH:MM.")


def format_time_slot(value: time) -> str:
    return value.strftime('%H:%M')


def get_slot(db: Session, slot_id: int) -> Slot:
    slot = db.get(Slot, slot_id)
    if slot is None:
        raise SlotNotFound(slot_id)
    return slot


def lock_slot(db: Session, slot_id: int) -> Slot:
    """Load the slot row under an exclusive row lock, waiting for concurrent holders."""
    slot = db.execute(
        select(Slot).where(Slot.id == slot_id).with_for_update().execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if slot is None:
        raise SlotNotFound(slot_id)
    return slot


def lock_slot_by_key(db: Session, doctor_id: str, slot_date: date, start_time: time) -> Slot | None:
    return db.execute(
        select(Slot)
        .where(
            Slot.doctor_id == doctor_id,
            Slot.slot_date == slot_date,
            Slot.start_time == start_time,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def list_slots(
    db: Session,
    doctor_id: str,
    slot_date: date | None = None,
    status: str | None = None,
) -> list[Slot]:
    query = select(Slot).where(Slot.doctor_id == doctor_id)
    if slot_date is not None:
        query = query.where(Slot.slot_date == slot_date)
    if status is not None:
        query = query.where(Slot.status == status)
    return list(db.execute(query.order_by(Slot.slot_date.asc(), Slot.start_time.asc())).scalars())


def list_available_slots(db: Session, doctor_id: str, slot_date: date) -> list[Slot]:
    """Available slots that can actually be booked.

    A slot released on its own while its appointment stays active is left out;
    booking it would be refused until that appointment is cancelled.
    """
    held_times = set(
        db.execute(
            select(Appointment.time_slot).where(
                Appointment.doctor_id == doctor_id,
                Appointment.appointment_date == slot_date,
                Appointment.status.in_(ACTIVE_STATUSES),
            )
        ).scalars()
    )
    return [
        slot
        for slot in list_slots(db, doctor_id, slot_date=slot_date, status=SLOT_AVAILABLE)
        if slot.time_slot not in held_times
    ]


def claim_slot(
    db: Session,
    slot: Slot,
    patient_id: str | None,
    appointment_id: int,
    patient_name: str | None = None,
) -> bool:
    """Transition a locked slot to booked. Returns False if it was no longer available.

    The UPDATE is guarded on the available status, so even on engines that
    ignore FOR UPDATE only one concurrent claim can match the row.
    """
    booked_at = datetime.now(timezone.utc)
    result = db.execute(
        update(Slot)
        .where(Slot.id == slot.id, Slot.status == SLOT_AVAILABLE)
        .values(
            status=SLOT_BOOKED,
            owner_patient_id=patient_id,
            owner_patient_name=patient_name,
            owner_appointment_id=appointment_id,
            booked_at=booked_at,
            updated_at=booked_at,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    db.refresh(slot)
    return True


def release_slot(db: Session, slot: Slot) -> Slot:
    slot.status = SLOT_AVAILABLE
    slot.owner_patient_id = None
    slot.owner_patient_name = None
    slot.owner_appointment_id = None
    slot.booked_at = None
    db.flush()
    return slot


def find_slot_owned_by(db: Session, appointment_id: int, lock: bool = False) -> Slot | None:
    query = select(Slot).where(Slot.owner_appointment_id == appointment_id)
    if lock:
        query = query.with_for_update()
    return db.execute(query).scalar_one_or_none()


def patient_has_overlapping_booking(db: Session, slot: Slot, patient_id: str | None) -> bool:
    """True when the patient already owns another booked slot with this doctor overlapping ``slot``."""
    if not patient_id:
        return False

    query = select(Slot.id).where(
        Slot.doctor_id == slot.doctor_id,
        Slot.slot_date == slot.slot_date,
        Slot.status == SLOT_BOOKED,
        Slot.owner_patient_id == patient_id,
        Slot.start_time < slot.end_time,
        Slot.end_time > slot.start_time,
    )
    # Not yet inserted when the legacy path is about to create it.
    if slot.id is not None:
        query = query.where(Slot.id != slot.id)

    overlapping = db.execute(query).first()
    return overlapping is not None
