from datetime import date
from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from scheduling.exceptions import Unavailable
from scheduling.models.appointment import (
    APPOINTMENT_STATUSES,
    STATUS_CANCELLED,
    STATUS_CHECKED_IN,
    STATUS_COMPLETED,
)
from scheduling.routes.common import (
    ensure_database_ready,
    get_db,
    get_session_factory,
    scheduling_errors,
    slot_unavailable,
)
from scheduling.schemas import AppointmentResponse, CreateAppointmentRequest, StatusUpdateRequest
from scheduling.services import appointments, events, legacy_allocator

router = APIRouter(tags=['appointments'])


def _schedule_event(
    background_tasks: BackgroundTasks,
    kind: str,
    appointment,
    session_factory: Callable[[], Session],
) -> None:
    background_tasks.add_task(
        events.record_event,
        events.BookingEvent.from_appointment(kind, appointment),
        session_factory,
    )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """Book by doctor, date and time for clients that do not hold slot ids."""
    ensure_database_ready()

    with scheduling_errors(db):
        result = legacy_allocator.find_and_book(
            db,
            data.doctor_id,
            data.appointment_date,
            data.time_slot,
            data.to_identity(),
        )

    if isinstance(result, Unavailable):
        raise slot_unavailable()

    _schedule_event(background_tasks, events.EVENT_BOOKED, result.appointment, session_factory)
    return result.appointment


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    doctor_id: str | None = Query(default=None),
    appointment_date: date | None = Query(default=None, alias='date'),
    appointment_status: str | None = Query(default=None, alias='status'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        if appointment_status is not None and appointment_status not in APPOINTMENT_STATUSES:
            raise ValueError('Invalid appointment status.')
        return appointments.list_appointments(
            db,
            doctor_id=doctor_id,
            appointment_date=appointment_date,
            status=appointment_status,
        )


@router.get('/code/{appointment_code}', response_model=AppointmentResponse)
def get_appointment_by_code(appointment_code: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    with scheduling_errors(db):
        return appointments.get_appointment_by_code(db, appointment_code.strip().upper())


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    with scheduling_errors(db):
        return appointments.get_appointment(db, appointment_id)


def _change_status(
    appointment_id: int,
    new_status: str,
    background_tasks: BackgroundTasks,
    db: Session,
    session_factory: Callable[[], Session],
):
    ensure_database_ready()

    with scheduling_errors(db):
        appointment = appointments.update_status(db, appointment_id, new_status)

    kind = events.EVENT_CANCELLED if new_status == STATUS_CANCELLED else events.EVENT_STATUS_CHANGED
    _schedule_event(background_tasks, kind, appointment, session_factory)
    return appointment


@router.post('/{appointment_id}/checkin', response_model=AppointmentResponse)
def check_in_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    return _change_status(appointment_id, STATUS_CHECKED_IN, background_tasks, db, session_factory)


@router.patch('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """Cancel the appointment and release the slot it holds."""
    return _change_status(appointment_id, STATUS_CANCELLED, background_tasks, db, session_factory)


@router.patch('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    return _change_status(appointment_id, STATUS_COMPLETED, background_tasks, db, session_factory)


@router.patch('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: StatusUpdateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    return _change_status(appointment_id, data.status, background_tasks, db, session_factory)
