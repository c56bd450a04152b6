from datetime import date
from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from scheduling.exceptions import Unavailable
from scheduling.routes.common import (
    ensure_database_ready,
    get_db,
    get_session_factory,
    scheduling_errors,
    slot_unavailable,
)
from scheduling.schemas import (
    AppointmentResponse,
    BookingResponse,
    BookSlotRequest,
    GenerateSlotsRequest,
    GenerateSlotsResponse,
    SlotResponse,
    validate_slot_status,
)
from scheduling.services import allocator, events, slot_generator, slot_store
from scheduling.services.slot_generator import ALL_WEEKDAYS, DateRange, SlotTemplate

router = APIRouter(tags=['slots'])


def build_templates(data: GenerateSlotsRequest) -> list[SlotTemplate]:
    templates = [
        SlotTemplate(
            start_time=template.start_time,
            end_time=template.end_time,
            weekdays=frozenset(template.weekdays) if template.weekdays else ALL_WEEKDAYS,
        )
        for template in data.templates or []
    ]

    if data.window is not None:
        templates.extend(
            slot_generator.expand_window(
                data.window.start_time,
                data.window.end_time,
                data.window.slot_duration_minutes,
                data.window.weekdays or ALL_WEEKDAYS,
            )
        )

    return templates


@router.post('/generate', response_model=GenerateSlotsResponse, status_code=status.HTTP_201_CREATED)
def generate_slots(data: GenerateSlotsRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    with scheduling_errors(db):
        date_range = DateRange(data.start_date, data.end_date)
        templates = build_templates(data)
        created = slot_generator.generate_slots(db, data.doctor_id, date_range, templates)
        return GenerateSlotsResponse(created=created)


@router.get('', response_model=list[SlotResponse])
def list_slots(
    doctor_id: str = Query(...),
    slot_date: date | None = Query(default=None, alias='date'),
    slot_status: str | None = Query(default=None, alias='status'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        return slot_store.list_slots(db, doctor_id, slot_date=slot_date, status=validate_slot_status(slot_status))


@router.get('/available', response_model=list[SlotResponse])
def list_available_slots(
    doctor_id: str = Query(...),
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        return slot_store.list_available_slots(db, doctor_id, slot_date)


@router.get('/{slot_id}', response_model=SlotResponse)
def get_slot(slot_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    with scheduling_errors(db):
        return slot_store.get_slot(db, slot_id)


@router.post('/{slot_id}/book', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def book_slot(
    slot_id: int,
    data: BookSlotRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    ensure_database_ready()

    with scheduling_errors(db):
        result = allocator.book_new_appointment(db, slot_id, data.to_identity())

    if isinstance(result, Unavailable):
        raise slot_unavailable()

    background_tasks.add_task(
        events.record_event,
        events.BookingEvent.from_appointment(events.EVENT_BOOKED, result.appointment),
        session_factory,
    )
    return BookingResponse(
        slot=SlotResponse.model_validate(result.slot),
        appointment=AppointmentResponse.model_validate(result.appointment),
    )


@router.post('/{slot_id}/cancel', response_model=SlotResponse)
def cancel_slot(slot_id: int, db: Session = Depends(get_db)):
    """Release the slot only; the appointment, if any, keeps its status."""
    ensure_database_ready()

    with scheduling_errors(db):
        return allocator.cancel(db, slot_id)
