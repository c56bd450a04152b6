"""Appointment lifecycle: creation codes, status transitions and lookups."""

import logging
import random
import string
import time
from dataclasses import dataclass
from datetime import date
from typing import Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt

from scheduling.core import config
from scheduling.exceptions import (
    AppointmentCodeCollision,
    AppointmentNotFound,
    IntegrityViolation,
    InvalidTransition,
    TransactionConflict,
)
from scheduling.models.appointment import (
    ACTIVE_STATUSES,
    APPOINTMENT_STATUSES,
    STATUS_CANCELLED,
    STATUS_CHECKED_IN,
    STATUS_COMPLETED,
    STATUS_SCHEDULED,
    Appointment,
)
from scheduling.services import slot_store
from scheduling.services.transactions import run_in_transaction, violates

logger = logging.getLogger(__name__)

T = TypeVar("T")

CODE_ALPHABET = string.digits + string.ascii_uppercase
CODE_SUFFIX_LENGTH = 5

ALLOWED_TRANSITIONS = {
    STATUS_SCHEDULED: frozenset({STATUS_CHECKED_IN, STATUS_CANCELLED}),
    STATUS_CHECKED_IN: frozenset({STATUS_COMPLETED, STATUS_CANCELLED}),
    STATUS_COMPLETED: frozenset(),
    STATUS_CANCELLED: frozenset(),
}

CODE_CONSTRAINT_MARKERS = ('appointment_code',)
ACTIVE_SLOT_MARKERS = (
    'uq_appointments_active_slot',
    'appointments.doctor_id, appointments.appointment_date, appointments.time_slot',
)


@dataclass(frozen=True)
class PatientIdentity:
    name: str
    phone: str
    patient_id: str | None = None
    email: str | None = None
    symptoms: str | None = None


def generate_appointment_code(now_ms: int | None = None, rng: random.Random | None = None) -> str:
    """Human-readable code such as ``APT-1704880800000-K3F9Q``."""
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    chooser = rng or random
    suffix = ''.join(chooser.choice(CODE_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH))
    return f'APT-{millis}-{suffix}'


def add_appointment(
    db: Session,
    doctor_id: str,
    appointment_date: date,
    time_slot: str,
    patient: PatientIdentity,
    code_factory: Callable[[], str] | None = None,
) -> Appointment:
    """Insert a scheduled appointment inside the caller's transaction."""
    appointment = Appointment(
        appointment_code=(code_factory or generate_appointment_code)(),
        doctor_id=doctor_id,
        appointment_date=appointment_date,
        time_slot=time_slot,
        patient_id=patient.patient_id,
        patient_name=patient.name,
        patient_phone=patient.phone,
        patient_email=patient.email,
        symptoms=patient.symptoms,
        status=STATUS_SCHEDULED,
    )
    db.add(appointment)

    try:
        db.flush()
    except IntegrityError as exc:
        if violates(exc, *CODE_CONSTRAINT_MARKERS):
            raise AppointmentCodeCollision(f'Appointment code {appointment.appointment_code} already exists.') from exc
        if violates(exc, *ACTIVE_SLOT_MARKERS):
            # Another transaction is booking the same doctor/date/time right now.
            raise TransactionConflict('An active appointment is being created for this slot.') from exc
        logger.error('Appointment insert violated a constraint: %s', exc.orig)
        raise IntegrityViolation('Appointment could not be stored.') from exc

    return appointment


def retry_code_collisions(operation: Callable[[], T], *, label: str) -> T:
    """Re-run ``operation`` with a fresh appointment code when the generated one collides."""
    retrying = Retrying(
        stop=stop_after_attempt(max(1, config.APPOINTMENT_CODE_MAX_ATTEMPTS)),
        retry=retry_if_exception_type(AppointmentCodeCollision),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    try:
        return retrying(operation)
    except AppointmentCodeCollision as exc:
        logger.error('%s: appointment code kept colliding, giving up: %s', label, exc)
        raise


def find_active_appointment(db: Session, doctor_id: str, appointment_date: date, time_slot: str) -> Appointment | None:
    return db.execute(
        select(Appointment).where(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date == appointment_date,
            Appointment.time_slot == time_slot,
            Appointment.status.in_(ACTIVE_STATUSES),
        )
    ).scalars().first()


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise AppointmentNotFound(appointment_id)
    return appointment


def get_appointment_by_code(db: Session, appointment_code: str) -> Appointment:
    appointment = db.execute(
        select(Appointment).where(Appointment.appointment_code == appointment_code)
    ).scalar_one_or_none()
    if appointment is None:
        raise AppointmentNotFound(appointment_code)
    return appointment


def list_appointments(
    db: Session,
    doctor_id: str | None = None,
    appointment_date: date | None = None,
    status: str | None = None,
) -> list[Appointment]:
    query = select(Appointment)
    if doctor_id is not None:
        query = query.where(Appointment.doctor_id == doctor_id)
    if appointment_date is not None:
        query = query.where(Appointment.appointment_date == appointment_date)
    if status is not None:
        query = query.where(Appointment.status == status)
    query = query.order_by(Appointment.appointment_date.asc(), Appointment.time_slot.asc(), Appointment.id.asc())
    return list(db.execute(query).scalars())


def lock_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.execute(
        select(Appointment)
        .where(Appointment.id == appointment_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if appointment is None:
        raise AppointmentNotFound(appointment_id)
    return appointment


def move_appointment(db: Session, appointment: Appointment, appointment_date: date, time_slot: str) -> Appointment:
    """Point a locked appointment at the slot it is about to own."""
    if (appointment.appointment_date, appointment.time_slot) == (appointment_date, time_slot):
        return appointment

    appointment.appointment_date = appointment_date
    appointment.time_slot = time_slot
    try:
        db.flush()
    except IntegrityError as exc:
        if violates(exc, *ACTIVE_SLOT_MARKERS):
            raise TransactionConflict('An active appointment is being created for this slot.') from exc
        logger.error('Appointment %s move violated a constraint: %s', appointment.appointment_code, exc.orig)
        raise IntegrityViolation('Appointment could not be moved.') from exc
    return appointment


def check_transition(current: str, requested: str) -> None:
    if requested not in APPOINTMENT_STATUSES:
        raise ValueError(f"Invalid status '{requested}'. Must be one of: {', '.join(APPOINTMENT_STATUSES)}")
    if requested not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(current, requested)


def update_status(db: Session, appointment_id: int, status: str) -> Appointment:
    """Advance an appointment. Cancelling also releases the slot it owns, in the same transaction."""

    def work(session: Session) -> Appointment:
        appointment = lock_appointment(session, appointment_id)

        if status == STATUS_CANCELLED and appointment.status == STATUS_CANCELLED:
            return appointment

        check_transition(appointment.status, status)
        appointment.status = status

        if status == STATUS_CANCELLED:
            owned_slot = slot_store.find_slot_owned_by(session, appointment.id, lock=True)
            if owned_slot is not None:
                slot_store.release_slot(session, owned_slot)

        session.flush()
        return appointment

    appointment = run_in_transaction(db, work, label=f'appointment {appointment_id} -> {status}')
    logger.info('Appointment %s is now %s', appointment.appointment_code, appointment.status)
    return appointment


def check_in(db: Session, appointment_id: int) -> Appointment:
    return update_status(db, appointment_id, STATUS_CHECKED_IN)


def complete(db: Session, appointment_id: int) -> Appointment:
    return update_status(db, appointment_id, STATUS_COMPLETED)


def cancel_appointment(db: Session, appointment_id: int) -> Appointment:
    return update_status(db, appointment_id, STATUS_CANCELLED)
