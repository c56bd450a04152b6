"""Booking by doctor, date and time for callers that do not know slot ids.

Decisions match the older booking flow (an active appointment or a booked
slot means unavailable, a missing slot is created already booked) but the
checks and the write happen in one transaction under the slot row lock, so
this path and ``allocator.book_new_appointment`` exclude each other.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scheduling.core import config
from scheduling.exceptions import IntegrityViolation, TransactionConflict, Unavailable
from scheduling.models.slot import SLOT_AVAILABLE, SLOT_BOOKED, Slot
from scheduling.services import appointments, slot_store
from scheduling.services.allocator import (
    ACTIVE_APPOINTMENT_EXISTS,
    PATIENT_ALREADY_BOOKED,
    SLOT_TAKEN,
    Booking,
)
from scheduling.services.appointments import PatientIdentity
from scheduling.services.transactions import run_in_transaction, violates

logger = logging.getLogger(__name__)

SLOT_KEY_MARKERS = (
    'uq_doctor_time_slots_key',
    'doctor_time_slots.doctor_id, doctor_time_slots.slot_date, doctor_time_slots.start_time',
)


def _default_end_time(start_time: time) -> time:
    start = datetime.combine(date.min, start_time)
    end = start + timedelta(minutes=config.DEFAULT_SLOT_DURATION_MINUTES)
    if end.date() != start.date():
        return time(23, 59, 59)
    return end.time()


def find_and_book(
    db: Session,
    doctor_id: str,
    slot_date: date,
    time_slot: str | time,
    patient: PatientIdentity,
) -> Booking | Unavailable:
    start_time = slot_store.parse_time_slot(time_slot)
    normalized_slot = slot_store.format_time_slot(start_time)

    def work(session: Session) -> Booking | Unavailable:
        slot = slot_store.lock_slot_by_key(session, doctor_id, slot_date, start_time)

        if appointments.find_active_appointment(session, doctor_id, slot_date, normalized_slot):
            return ACTIVE_APPOINTMENT_EXISTS

        if slot is not None:
            if slot.status != SLOT_AVAILABLE:
                return SLOT_TAKEN
            if slot_store.patient_has_overlapping_booking(session, slot, patient.patient_id):
                return PATIENT_ALREADY_BOOKED

        appointment = appointments.add_appointment(session, doctor_id, slot_date, normalized_slot, patient)

        if slot is not None:
            if not slot_store.claim_slot(session, slot, patient.patient_id, appointment.id, patient.name):
                return SLOT_TAKEN
            return Booking(slot=slot, appointment=appointment)

        slot = Slot(
            doctor_id=doctor_id,
            slot_date=slot_date,
            start_time=start_time,
            end_time=_default_end_time(start_time),
            status=SLOT_BOOKED,
            owner_patient_id=patient.patient_id,
            owner_patient_name=patient.name,
            owner_appointment_id=appointment.id,
            booked_at=datetime.now(timezone.utc),
        )
        if slot_store.patient_has_overlapping_booking(session, slot, patient.patient_id):
            return PATIENT_ALREADY_BOOKED

        session.add(slot)
        try:
            session.flush()
        except IntegrityError as exc:
            if violates(exc, *SLOT_KEY_MARKERS):
                # Created concurrently; the retry will find and lock it.
                raise TransactionConflict('Slot was created by a concurrent booking.') from exc
            logger.error('Slot insert for doctor %s on %s %s violated a constraint: %s',
                         doctor_id, slot_date, normalized_slot, exc.orig)
            raise IntegrityViolation('Slot could not be stored.') from exc

        return Booking(slot=slot, appointment=appointment)

    label = f'book {doctor_id} {slot_date} {normalized_slot}'
    result = appointments.retry_code_collisions(
        lambda: run_in_transaction(db, work, label=label),
        label=label,
    )
    if isinstance(result, Unavailable):
        logger.info('%s unavailable: %s', label, result.reason)
    else:
        logger.info('%s booked as slot %s, appointment %s', label, result.slot.id, result.appointment.appointment_code)
    return result
