import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, time

import pytest

from scheduling.exceptions import Unavailable
from scheduling.models.appointment import Appointment
from scheduling.models.slot import SLOT_BOOKED, Slot
from scheduling.services import allocator, appointments, legacy_allocator
from scheduling.services.allocator import Booking
from scheduling.services.appointments import PatientIdentity

SLOT_DATE = date(2024, 1, 10)


def _race(session_factory, contenders: int, attempt):
    barrier = threading.Barrier(contenders)

    def run(index: int):
        session = session_factory()
        try:
            barrier.wait()
            return attempt(session, index)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=contenders) as pool:
        return list(pool.map(run, range(contenders)))


def _patient(index: int) -> PatientIdentity:
    return PatientIdentity(name=f'Patient {index}', phone=f'555-01{index:02d}', patient_id=f'patient-{index}')


@pytest.mark.parametrize('contenders', [2, 8])
def test_concurrent_bookings_of_one_slot_have_single_winner(session_factory, make_slot, contenders) -> None:
    slot = make_slot()

    results = _race(
        session_factory,
        contenders,
        lambda session, index: allocator.book_new_appointment(session, slot.id, _patient(index)),
    )

    winners = [result for result in results if isinstance(result, Booking)]
    assert len(winners) == 1
    assert sum(isinstance(result, Unavailable) for result in results) == contenders - 1

    check = session_factory()
    try:
        stored = check.get(Slot, slot.id)
        assert stored.status == SLOT_BOOKED
        assert stored.owner_appointment_id == winners[0].appointment.id
        assert check.query(Appointment).count() == 1
    finally:
        check.close()


@pytest.mark.parametrize('contenders', [2, 8])
def test_concurrent_book_of_one_slot_has_single_owner(db, session_factory, make_slot, contenders) -> None:
    slot = make_slot()
    appointment_ids = []
    for index in range(contenders):
        # Distinct times so every appointment is active at once; the winner moves onto the slot.
        pending = appointments.add_appointment(db, 'doc-1', SLOT_DATE, f'{10 + index}:00', _patient(index))
        db.commit()
        appointment_ids.append(pending.id)

    results = _race(
        session_factory,
        contenders,
        lambda session, index: allocator.book(session, slot.id, f'patient-{index}', appointment_ids[index]),
    )

    assert sum(isinstance(result, Slot) for result in results) == 1
    assert sum(isinstance(result, Unavailable) for result in results) == contenders - 1

    check = session_factory()
    try:
        stored = check.get(Slot, slot.id)
        assert stored.status == SLOT_BOOKED
        assert stored.owner_appointment_id in appointment_ids
        assert stored.owner_patient_id == f'patient-{appointment_ids.index(stored.owner_appointment_id)}'
        assert check.query(Slot).filter(Slot.owner_appointment_id.isnot(None)).count() == 1
    finally:
        check.close()


def test_two_patients_racing_for_the_same_slot(session_factory, make_slot, patient_a, patient_b) -> None:
    slot = make_slot()
    patients = [patient_a, patient_b]

    results = _race(
        session_factory,
        2,
        lambda session, index: allocator.book_new_appointment(session, slot.id, patients[index]),
    )

    winner = next(result for result in results if isinstance(result, Booking))
    assert any(isinstance(result, Unavailable) for result in results)

    check = session_factory()
    try:
        assert check.get(Slot, slot.id).owner_patient_id == winner.appointment.patient_id
    finally:
        check.close()


def test_legacy_and_exclusive_paths_racing_have_single_winner(session_factory, make_slot) -> None:
    slot = make_slot(start_time=time(10, 0), end_time=time(10, 30))

    def attempt(session, index):
        if index % 2:
            return allocator.book_new_appointment(session, slot.id, _patient(index))
        return legacy_allocator.find_and_book(session, 'doc-1', SLOT_DATE, '10:00', _patient(index))

    results = _race(session_factory, 4, attempt)

    assert sum(isinstance(result, Booking) for result in results) == 1

    check = session_factory()
    try:
        assert check.query(Slot).count() == 1
        assert check.query(Appointment).count() == 1
    finally:
        check.close()
