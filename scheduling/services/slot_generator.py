"""Bulk slot generation from recurring time-of-day templates."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scheduling.core import config
from scheduling.exceptions import IntegrityViolation, ScheduleInUse, ScheduleNotFound
from scheduling.models.schedule import DoctorSchedule
from scheduling.models.slot import SLOT_AVAILABLE, SLOT_BOOKED, Slot
from scheduling.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)

ALL_WEEKDAYS = frozenset(range(7))


@dataclass(frozen=True)
class SlotTemplate:
    start_time: time
    end_time: time
    weekdays: frozenset[int] = ALL_WEEKDAYS

    def __post_init__(self) -> None:
        if self.start_time >= self.end_time:
            raise ValueError('Template start time must be before its end time.')
        if not self.weekdays or not self.weekdays <= ALL_WEEKDAYS:
            raise ValueError('Template weekdays must be between 0 (Monday) and 6 (Sunday).')

    def applies_to(self, day: date) -> bool:
        return day.weekday() in self.weekdays


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError('Date range end must not be before its start.')
        if (self.end - self.start).days + 1 > config.SLOT_GENERATION_MAX_DAYS:
            raise ValueError(f'Slots can be generated for at most {config.SLOT_GENERATION_MAX_DAYS} days at a time.')

    def days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)


def expand_window(
    start_time: time,
    end_time: time,
    slot_minutes: int | None = None,
    weekdays: Iterable[int] = ALL_WEEKDAYS,
) -> list[SlotTemplate]:
    """Split a working window into back-to-back templates of ``slot_minutes``.

    A trailing remainder shorter than one slot is dropped.
    """
    duration = timedelta(minutes=slot_minutes or config.DEFAULT_SLOT_DURATION_MINUTES)
    if duration <= timedelta(0):
        raise ValueError('Slot duration must be positive.')

    day_set = frozenset(weekdays)
    anchor = date.min
    current = datetime.combine(anchor, start_time)
    window_end = datetime.combine(anchor, end_time)

    templates: list[SlotTemplate] = []
    while current + duration <= window_end:
        templates.append(SlotTemplate(current.time(), (current + duration).time(), day_set))
        current += duration

    return templates


def generate_slots(
    db: Session,
    doctor_id: str,
    date_range: DateRange,
    templates: Iterable[SlotTemplate],
    schedule_id: int | None = None,
) -> int:
    """Create one available slot per (day x template); existing slots are left alone.

    Returns the number of slots inserted, so a repeated call returns 0.
    """
    templates = list(templates)
    existing_keys = set(
        db.execute(
            select(Slot.slot_date, Slot.start_time).where(
                Slot.doctor_id == doctor_id,
                Slot.slot_date >= date_range.start,
                Slot.slot_date <= date_range.end,
            )
        ).all()
    )

    new_slots: list[Slot] = []
    for day in date_range.days():
        for template in templates:
            key = (day, template.start_time)
            if not template.applies_to(day) or key in existing_keys:
                continue
            existing_keys.add(key)
            new_slots.append(
                Slot(
                    doctor_id=doctor_id,
                    schedule_id=schedule_id,
                    slot_date=day,
                    start_time=template.start_time,
                    end_time=template.end_time,
                    status=SLOT_AVAILABLE,
                )
            )

    if not new_slots:
        return 0

    try:
        db.add_all(new_slots)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.error('Slot generation for doctor %s (%s..%s) violated a constraint: %s',
                     doctor_id, date_range.start, date_range.end, exc.orig)
        raise IntegrityViolation('Generated slots collide with existing slots.') from exc

    logger.info('Generated %d slots for doctor %s between %s and %s',
                len(new_slots), doctor_id, date_range.start, date_range.end)
    return len(new_slots)


def create_schedule(
    db: Session,
    doctor_id: str,
    start_time: time,
    end_time: time,
    weekdays: Iterable[int] = (0, 1, 2, 3, 4),
    slot_duration_minutes: int | None = None,
) -> DoctorSchedule:
    day_set = sorted(set(weekdays))
    if not day_set or not set(day_set) <= ALL_WEEKDAYS:
        raise ValueError('Weekdays must be between 0 (Monday) and 6 (Sunday).')
    if start_time >= end_time:
        raise ValueError('Schedule start time must be before its end time.')

    schedule = DoctorSchedule(
        doctor_id=doctor_id,
        weekdays=','.join(str(day) for day in day_set),
        start_time=start_time,
        end_time=end_time,
        slot_duration_minutes=slot_duration_minutes or config.DEFAULT_SLOT_DURATION_MINUTES,
    )
    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    return schedule


def get_schedule(db: Session, schedule_id: int) -> DoctorSchedule:
    schedule = db.get(DoctorSchedule, schedule_id)
    if schedule is None:
        raise ScheduleNotFound(schedule_id)
    return schedule


def list_schedules(db: Session, doctor_id: str) -> list[DoctorSchedule]:
    return list(
        db.execute(
            select(DoctorSchedule)
            .where(DoctorSchedule.doctor_id == doctor_id)
            .order_by(DoctorSchedule.start_time.asc())
        ).scalars()
    )


def schedule_templates(schedule: DoctorSchedule) -> list[SlotTemplate]:
    return expand_window(
        schedule.start_time,
        schedule.end_time,
        schedule.slot_duration_minutes,
        schedule.weekday_set,
    )


def generate_from_schedule(db: Session, schedule_id: int, date_range: DateRange) -> int:
    schedule = get_schedule(db, schedule_id)
    return generate_slots(
        db,
        schedule.doctor_id,
        date_range,
        schedule_templates(schedule),
        schedule_id=schedule.id,
    )


def delete_schedule(db: Session, schedule_id: int) -> int:
    """Remove a schedule template together with its slots. Returns the number of slots removed."""
    schedule = get_schedule(db, schedule_id)
    doctor_id = schedule.doctor_id

    def work(session: Session) -> int:
        # Lock the schedule's slots so none can be booked while they are removed.
        statuses = session.execute(
            select(Slot.status).where(Slot.schedule_id == schedule.id).with_for_update()
        ).scalars().all()
        if SLOT_BOOKED in statuses:
            raise ScheduleInUse(f'Schedule {schedule_id} still has booked slots.')

        session.execute(delete(Slot).where(Slot.schedule_id == schedule.id))
        session.delete(schedule)
        return len(statuses)

    removed = run_in_transaction(db, work, label=f'delete schedule {schedule_id}')

    logger.info('Deleted schedule %s for doctor %s and %d slots', schedule_id, doctor_id, removed)
    return removed
