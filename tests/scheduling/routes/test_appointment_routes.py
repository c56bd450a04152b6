from datetime import date

import pytest
from fastapi import BackgroundTasks, HTTPException
from fastapi.testclient import TestClient

from scheduling.main import app
from scheduling.models.activity import Notification
from scheduling.models.appointment import STATUS_CANCELLED, STATUS_CHECKED_IN, STATUS_COMPLETED
from scheduling.models.slot import SLOT_AVAILABLE, Slot
from scheduling.routes import common
from scheduling.routes.appointment_routes import (
    cancel_appointment,
    check_in_appointment,
    complete_appointment,
    create_appointment,
    get_appointment,
    get_appointment_by_code,
    list_appointments,
    update_appointment_status,
)
from scheduling.schemas import CreateAppointmentRequest, StatusUpdateRequest

SLOT_DATE = date(2024, 1, 10)


@pytest.fixture(autouse=True)
def skip_schema_bootstrap(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('scheduling.routes.appointment_routes.ensure_database_ready', lambda: None)


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[common.get_db] = override_get_db
    app.dependency_overrides[common.get_session_factory] = lambda: session_factory
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _request(time_slot: str = '09:00', patient_id: str = 'patient-a') -> CreateAppointmentRequest:
    return CreateAppointmentRequest(
        doctor_id='doc-1',
        appointment_date=SLOT_DATE,
        time_slot=time_slot,
        patient_name='Asha Rao',
        patient_phone='555-0101',
        patient_id=patient_id,
    )


def _create(db, session_factory, **kwargs):
    return create_appointment(
        data=_request(**kwargs),
        background_tasks=BackgroundTasks(),
        db=db,
        session_factory=session_factory,
    )


def test_create_appointment_books_slot(db, session_factory) -> None:
    appointment = _create(db, session_factory)

    slot = db.query(Slot).one()
    assert slot.owner_appointment_id == appointment.id
    assert appointment.time_slot == '09:00'


def test_create_appointment_for_taken_time_is_conflict(db, session_factory) -> None:
    _create(db, session_factory)

    with pytest.raises(HTTPException) as exception_info:
        _create(db, session_factory, patient_id='patient-b')

    assert exception_info.value.status_code == 409


def test_create_appointment_rejects_malformed_time(db, session_factory) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _create(db, session_factory, time_slot='whenever')

    assert exception_info.value.status_code == 400


def test_lifecycle_through_routes(db, session_factory) -> None:
    appointment = _create(db, session_factory)
    background_tasks = BackgroundTasks()

    checked_in = check_in_appointment(
        appointment_id=appointment.id, background_tasks=background_tasks, db=db, session_factory=session_factory
    )
    assert checked_in.status == STATUS_CHECKED_IN

    completed = complete_appointment(
        appointment_id=appointment.id, background_tasks=background_tasks, db=db, session_factory=session_factory
    )

    assert completed.status == STATUS_COMPLETED
    assert len(background_tasks.tasks) == 2


def test_completing_scheduled_appointment_is_conflict(db, session_factory) -> None:
    appointment = _create(db, session_factory)

    with pytest.raises(HTTPException) as exception_info:
        update_appointment_status(
            appointment_id=appointment.id,
            data=StatusUpdateRequest(status=' Completed '),
            background_tasks=BackgroundTasks(),
            db=db,
            session_factory=session_factory,
        )

    assert exception_info.value.status_code == 409


def test_cancel_route_releases_slot(db, session_factory) -> None:
    appointment = _create(db, session_factory)

    cancelled = cancel_appointment(
        appointment_id=appointment.id, background_tasks=BackgroundTasks(), db=db, session_factory=session_factory
    )

    assert cancelled.status == STATUS_CANCELLED
    db.expire_all()
    assert db.query(Slot).one().status == SLOT_AVAILABLE


def test_lookup_routes(db, session_factory) -> None:
    appointment = _create(db, session_factory)

    assert get_appointment(appointment_id=appointment.id, db=db).id == appointment.id
    assert get_appointment_by_code(appointment_code=appointment.appointment_code.lower(), db=db).id == appointment.id
    with pytest.raises(HTTPException) as exception_info:
        get_appointment(appointment_id=999, db=db)
    assert exception_info.value.status_code == 404


def test_list_appointments_rejects_unknown_status(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_appointments(doctor_id='doc-1', appointment_date=None, appointment_status='no-show', db=db)

    assert exception_info.value.status_code == 400


def test_http_create_runs_booking_event(client, db) -> None:
    payload = {
        'doctor_id': 'doc-1',
        'appointment_date': '2024-01-10',
        'time_slot': '10:30',
        'patient_name': 'Asha Rao',
        'patient_phone': '555-0101',
        'patient_id': 'patient-a',
    }

    created = client.post('/appointments', json=payload)
    conflict = client.post('/appointments', json={**payload, 'patient_id': 'patient-b'})

    assert created.status_code == 201
    assert conflict.status_code == 409
    assert {n.user_role for n in db.query(Notification).all()} == {'DOCTOR', 'PATIENT'}


def test_http_invalid_transition_and_missing_appointment(client) -> None:
    payload = {
        'doctor_id': 'doc-1',
        'appointment_date': '2024-01-10',
        'time_slot': '11:00',
        'patient_name': 'Asha Rao',
        'patient_phone': '555-0101',
    }
    appointment_id = client.post('/appointments', json=payload).json()['id']

    assert client.patch(f'/appointments/{appointment_id}/complete').status_code == 409
    assert client.post('/appointments/999/checkin').status_code == 404
    assert client.patch(f'/appointments/{appointment_id}/cancel').json()['status'] == STATUS_CANCELLED
