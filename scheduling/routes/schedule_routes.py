from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from scheduling.routes.common import ensure_database_ready, get_db, scheduling_errors
from scheduling.schemas import (
    CreateScheduleRequest,
    DeleteScheduleResponse,
    GenerateFromScheduleRequest,
    GenerateSlotsResponse,
    ScheduleResponse,
)
from scheduling.services import slot_generator
from scheduling.services.slot_generator import DateRange

router = APIRouter(tags=['schedules'])


@router.post('', response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
def create_schedule(data: CreateScheduleRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    with scheduling_errors(db):
        schedule = slot_generator.create_schedule(
            db,
            data.doctor_id,
            data.start_time,
            data.end_time,
            weekdays=data.weekdays,
            slot_duration_minutes=data.slot_duration_minutes,
        )
        return ScheduleResponse.from_schedule(schedule)


@router.get('', response_model=list[ScheduleResponse])
def list_schedules(doctor_id: str = Query(...), db: Session = Depends(get_db)):
    ensure_database_ready()

    with scheduling_errors(db):
        return [ScheduleResponse.from_schedule(schedule) for schedule in slot_generator.list_schedules(db, doctor_id)]


@router.post('/{schedule_id}/generate', response_model=GenerateSlotsResponse, status_code=status.HTTP_201_CREATED)
def generate_schedule_slots(schedule_id: int, data: GenerateFromScheduleRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    with scheduling_errors(db):
        created = slot_generator.generate_from_schedule(db, schedule_id, DateRange(data.start_date, data.end_date))
        return GenerateSlotsResponse(created=created)


@router.delete('/{schedule_id}', response_model=DeleteScheduleResponse)
def delete_schedule(schedule_id: int, db: Session = Depends(get_db)):
    """Remove a template and its slots; refused while any of them is booked."""
    ensure_database_ready()

    with scheduling_errors(db):
        removed = slot_generator.delete_schedule(db, schedule_id)
        return DeleteScheduleResponse(removed_slots=removed)
