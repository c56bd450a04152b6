"""Exclusive slot allocation by slot id.

The slot row is the unit of mutual exclusion. A booking locks the row,
re-reads its status under the lock and flips it to booked in the same
transaction; of any number of concurrent callers on one slot exactly one
wins and the rest get ``Unavailable``.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from scheduling.exceptions import Unavailable
from scheduling.models.appointment import Appointment
from scheduling.models.slot import SLOT_AVAILABLE, Slot
from scheduling.services import appointments, slot_store
from scheduling.services.appointments import PatientIdentity
from scheduling.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)

SLOT_TAKEN = Unavailable('slot is already booked')
ACTIVE_APPOINTMENT_EXISTS = Unavailable('an active appointment already occupies this time')
PATIENT_ALREADY_BOOKED = Unavailable('patient already holds an overlapping booking with this doctor')
APPOINTMENT_NOT_BOOKABLE = Unavailable('appointment is not active, belongs to another doctor or already holds a slot')


@dataclass(frozen=True)
class Booking:
    slot: Slot
    appointment: Appointment


def book(db: Session, slot_id: int, patient_id: str | None, appointment_id: int) -> Slot | Unavailable:
    """Attach an existing appointment to the slot if it is still available.

    The appointment must be active, belong to the slot's doctor and hold no
    other slot. The slot is authoritative, so the winning appointment takes
    the slot's date and time.
    """

    def work(session: Session) -> Slot | Unavailable:
        slot = slot_store.lock_slot(session, slot_id)
        appointment = appointments.lock_appointment(session, appointment_id)
        if slot.status != SLOT_AVAILABLE:
            return SLOT_TAKEN
        if not appointment.is_active or appointment.doctor_id != slot.doctor_id:
            return APPOINTMENT_NOT_BOOKABLE
        if slot_store.find_slot_owned_by(session, appointment.id) is not None:
            return APPOINTMENT_NOT_BOOKABLE
        occupant = appointments.find_active_appointment(session, slot.doctor_id, slot.slot_date, slot.time_slot)
        if occupant is not None and occupant.id != appointment.id:
            return ACTIVE_APPOINTMENT_EXISTS
        if slot_store.patient_has_overlapping_booking(session, slot, patient_id):
            return PATIENT_ALREADY_BOOKED

        appointments.move_appointment(session, appointment, slot.slot_date, slot.time_slot)
        if not slot_store.claim_slot(session, slot, patient_id, appointment.id, appointment.patient_name):
            return SLOT_TAKEN
        return slot

    result = run_in_transaction(db, work, label=f'book slot {slot_id}')
    if isinstance(result, Unavailable):
        logger.info('Slot %s unavailable for appointment %s: %s', slot_id, appointment_id, result.reason)
    else:
        logger.info('Slot %s booked for appointment %s', slot_id, appointment_id)
    return result


def book_new_appointment(db: Session, slot_id: int, patient: PatientIdentity) -> Booking | Unavailable:
    """Create the appointment and book the slot for it as one transaction."""

    def work(session: Session) -> Booking | Unavailable:
        slot = slot_store.lock_slot(session, slot_id)
        if slot.status != SLOT_AVAILABLE:
            return SLOT_TAKEN
        if slot_store.patient_has_overlapping_booking(session, slot, patient.patient_id):
            return PATIENT_ALREADY_BOOKED
        # A slot released without cancelling its appointment must not be handed out twice.
        if appointments.find_active_appointment(session, slot.doctor_id, slot.slot_date, slot.time_slot):
            return ACTIVE_APPOINTMENT_EXISTS

        appointment = appointments.add_appointment(
            session,
            slot.doctor_id,
            slot.slot_date,
            slot.time_slot,
            patient,
        )
        if not slot_store.claim_slot(session, slot, patient.patient_id, appointment.id, patient.name):
            return SLOT_TAKEN
        return Booking(slot=slot, appointment=appointment)

    result = appointments.retry_code_collisions(
        lambda: run_in_transaction(db, work, label=f'book slot {slot_id}'),
        label=f'book slot {slot_id}',
    )
    if isinstance(result, Unavailable):
        logger.info('Slot %s unavailable: %s', slot_id, result.reason)
    else:
        logger.info('Slot %s booked as appointment %s', slot_id, result.appointment.appointment_code)
    return result


def cancel(db: Session, slot_id: int) -> Slot:
    """Release the slot. Cancelling an available slot is a successful no-op.

    The owning appointment is left untouched; use
    ``appointments.cancel_appointment`` to cancel both together.
    """

    def work(session: Session) -> Slot:
        slot = slot_store.lock_slot(session, slot_id)
        if not slot.is_booked:
            return slot
        return slot_store.release_slot(session, slot)

    slot = run_in_transaction(db, work, label=f'cancel slot {slot_id}')
    logger.info('Slot %s released', slot_id)
    return slot
