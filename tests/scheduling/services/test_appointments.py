import random
import re
from datetime import time

import pytest

from scheduling.core import config
from scheduling.exceptions import AppointmentCodeCollision, AppointmentNotFound, InvalidTransition
from scheduling.models.appointment import (
    STATUS_CANCELLED,
    STATUS_CHECKED_IN,
    STATUS_COMPLETED,
    STATUS_SCHEDULED,
)
from scheduling.models.slot import SLOT_AVAILABLE, SLOT_BOOKED, Slot
from scheduling.services import allocator, appointments
from scheduling.services.allocator import Booking


def _booked(db, make_slot, patient) -> Booking:
    slot = make_slot()
    return allocator.book_new_appointment(db, slot.id, patient)


def test_generate_appointment_code_format() -> None:
    code = appointments.generate_appointment_code(now_ms=1704880800000, rng=random.Random(7))

    assert re.fullmatch(r'APT-1704880800000-[0-9A-Z]{5}', code)


def test_forward_lifecycle(db, make_slot, patient_a) -> None:
    booking = _booked(db, make_slot, patient_a)

    checked_in = appointments.check_in(db, booking.appointment.id)
    assert checked_in.status == STATUS_CHECKED_IN

    completed = appointments.complete(db, booking.appointment.id)
    assert completed.status == STATUS_COMPLETED

    db.expire_all()
    assert db.get(Slot, booking.slot.id).status == SLOT_BOOKED


@pytest.mark.parametrize(
    ('steps', 'rejected'),
    [
        ([], STATUS_COMPLETED),
        ([STATUS_CHECKED_IN], STATUS_SCHEDULED),
        ([STATUS_CHECKED_IN], STATUS_CHECKED_IN),
        ([STATUS_CHECKED_IN, STATUS_COMPLETED], STATUS_CANCELLED),
        ([STATUS_CANCELLED], STATUS_CHECKED_IN),
    ],
)
def test_invalid_transitions_are_rejected(db, make_slot, patient_a, steps, rejected) -> None:
    booking = _booked(db, make_slot, patient_a)
    for step in steps:
        appointments.update_status(db, booking.appointment.id, step)

    with pytest.raises(InvalidTransition):
        appointments.update_status(db, booking.appointment.id, rejected)


def test_unknown_status_is_rejected(db, make_slot, patient_a) -> None:
    booking = _booked(db, make_slot, patient_a)

    with pytest.raises(ValueError):
        appointments.update_status(db, booking.appointment.id, 'no-show')


def test_cancel_releases_owned_slot(db, make_slot, patient_a) -> None:
    booking = _booked(db, make_slot, patient_a)

    cancelled = appointments.cancel_appointment(db, booking.appointment.id)

    assert cancelled.status == STATUS_CANCELLED
    db.expire_all()
    slot = db.get(Slot, booking.slot.id)
    assert slot.status == SLOT_AVAILABLE
    assert slot.owner_appointment_id is None


def test_cancel_from_checked_in_releases_slot(db, make_slot, patient_a) -> None:
    booking = _booked(db, make_slot, patient_a)
    appointments.check_in(db, booking.appointment.id)

    appointments.cancel_appointment(db, booking.appointment.id)

    db.expire_all()
    assert db.get(Slot, booking.slot.id).status == SLOT_AVAILABLE


def test_cancelling_twice_is_a_no_op(db, make_slot, patient_a) -> None:
    booking = _booked(db, make_slot, patient_a)
    appointments.cancel_appointment(db, booking.appointment.id)

    again = appointments.cancel_appointment(db, booking.appointment.id)

    assert again.status == STATUS_CANCELLED


def test_update_status_raises_not_found(db) -> None:
    with pytest.raises(AppointmentNotFound):
        appointments.check_in(db, 12345)


def test_lookup_by_code(db, make_slot, patient_a) -> None:
    booking = _booked(db, make_slot, patient_a)

    found = appointments.get_appointment_by_code(db, booking.appointment.appointment_code)

    assert found.id == booking.appointment.id
    with pytest.raises(AppointmentNotFound):
        appointments.get_appointment_by_code(db, 'APT-0-XXXXX')


def test_list_appointments_filters_by_status(db, make_slot, patient_a, patient_b) -> None:
    first = allocator.book_new_appointment(db, make_slot(start_time=time(9, 0)).id, patient_a)
    allocator.book_new_appointment(db, make_slot(start_time=time(10, 0), end_time=time(10, 30)).id, patient_b)
    appointments.cancel_appointment(db, first.appointment.id)

    scheduled = appointments.list_appointments(db, doctor_id='doc-1', status=STATUS_SCHEDULED)

    assert [a.patient_id for a in scheduled] == ['patient-b']


def test_code_collision_is_retried_with_fresh_code(db, make_slot, patient_a, patient_b, monkeypatch) -> None:
    existing = _booked(db, make_slot, patient_a)
    codes = iter([existing.appointment.appointment_code, 'APT-1-FRESH'])
    monkeypatch.setattr(appointments, 'generate_appointment_code', lambda: next(codes))
    second_slot = make_slot(start_time=time(11, 0), end_time=time(11, 30))

    result = allocator.book_new_appointment(db, second_slot.id, patient_b)

    assert isinstance(result, Booking)
    assert result.appointment.appointment_code == 'APT-1-FRESH'


def test_code_collision_gives_up_after_configured_attempts(db, make_slot, patient_a, patient_b, monkeypatch) -> None:
    existing = _booked(db, make_slot, patient_a)
    monkeypatch.setattr(config, 'APPOINTMENT_CODE_MAX_ATTEMPTS', 2)
    monkeypatch.setattr(appointments, 'generate_appointment_code', lambda: existing.appointment.appointment_code)
    second_slot = make_slot(start_time=time(11, 0), end_time=time(11, 30))

    with pytest.raises(AppointmentCodeCollision):
        allocator.book_new_appointment(db, second_slot.id, patient_b)

    db.expire_all()
    assert db.get(Slot, second_slot.id).status == SLOT_AVAILABLE
