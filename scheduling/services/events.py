"""Booking and cancellation events.

Events are written after the booking transaction has committed, from a
FastAPI background task with their own session. A failure here is logged and
never reaches the caller.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduling.database import SessionLocal
from scheduling.models.activity import ActivityLog, Notification
from scheduling.models.appointment import Appointment

logger = logging.getLogger(__name__)

EVENT_BOOKED = 'booked'
EVENT_CANCELLED = 'cancelled'
EVENT_STATUS_CHANGED = 'status_changed'


@dataclass(frozen=True)
class BookingEvent:
    kind: str
    appointment_id: int
    appointment_code: str
    doctor_id: str
    patient_name: str
    appointment_date: date
    time_slot: str
    status: str
    patient_id: str | None = None

    @classmethod
    def from_appointment(cls, kind: str, appointment: Appointment) -> 'BookingEvent':
        return cls(
            kind=kind,
            appointment_id=appointment.id,
            appointment_code=appointment.appointment_code,
            doctor_id=appointment.doctor_id,
            patient_name=appointment.patient_name,
            appointment_date=appointment.appointment_date,
            time_slot=appointment.time_slot,
            status=appointment.status,
            patient_id=appointment.patient_id,
        )


def _activity_for(event: BookingEvent) -> ActivityLog:
    if event.kind == EVENT_BOOKED:
        action = f'New appointment booked for {event.patient_name}'
        activity_type = 'info'
    elif event.kind == EVENT_CANCELLED:
        action = f'Appointment {event.appointment_code} cancelled for {event.patient_name}'
        activity_type = 'warning'
    else:
        action = f'Appointment {event.appointment_code} marked {event.status}'
        activity_type = 'info'

    return ActivityLog(
        action=action,
        entity_type='appointment',
        entity_id=str(event.appointment_id),
        activity_type=activity_type,
    )


def _notifications_for(event: BookingEvent) -> list[Notification]:
    when = f'{event.appointment_date.isoformat()} at {event.time_slot}'

    if event.kind == EVENT_BOOKED:
        notifications = [
            Notification(
                user_id=event.doctor_id,
                user_role='DOCTOR',
                title='New Appointment Booked',
                message=f'{event.patient_name} has booked an appointment for {when}',
                related_entity_type='appointment',
                related_entity_id=str(event.appointment_id),
            )
        ]
        if event.patient_id:
            notifications.append(
                Notification(
                    user_id=event.patient_id,
                    user_role='PATIENT',
                    title='Appointment Confirmed',
                    message=f'Your appointment {event.appointment_code} is confirmed for {when}',
                    related_entity_type='appointment',
                    related_entity_id=str(event.appointment_id),
                )
            )
        return notifications

    if event.kind == EVENT_CANCELLED:
        return [
            Notification(
                user_id=event.doctor_id,
                user_role='DOCTOR',
                title='Appointment Cancelled',
                message=f'{event.patient_name} cancelled the appointment for {when}',
                related_entity_type='appointment',
                related_entity_id=str(event.appointment_id),
            )
        ]

    return []


def record_event(event: BookingEvent, session_factory: Callable[[], Session] = SessionLocal) -> None:
    db = session_factory()
    try:
        db.add(_activity_for(event))
        db.add_all(_notifications_for(event))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Failed to record %s event for appointment %s', event.kind, event.appointment_code)
    finally:
        db.close()
