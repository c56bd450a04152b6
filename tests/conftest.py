import os
from datetime import date, time

import pytest
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from scheduling.database import Base, build_engine  # noqa: E402
from scheduling.models import activity, appointment, schedule, slot  # noqa: E402,F401
from scheduling.models.slot import SLOT_AVAILABLE, Slot  # noqa: E402
from scheduling.services.appointments import PatientIdentity  # noqa: E402

SLOT_DATE = date(2024, 1, 10)


@pytest.fixture
def engine(tmp_path):
    test_engine = build_engine(f'sqlite:///{tmp_path / "scheduling.db"}')
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_slot(db):
    def _make_slot(
        doctor_id: str = 'doc-1',
        slot_date: date = SLOT_DATE,
        start_time: time = time(9, 0),
        end_time: time = time(9, 30),
    ) -> Slot:
        new_slot = Slot(
            doctor_id=doctor_id,
            slot_date=slot_date,
            start_time=start_time,
            end_time=end_time,
            status=SLOT_AVAILABLE,
        )
        db.add(new_slot)
        db.commit()
        return new_slot

    return _make_slot


@pytest.fixture
def patient_a() -> PatientIdentity:
    return PatientIdentity(name='Asha Rao', phone='555-0101', patient_id='patient-a')


@pytest.fixture
def patient_b() -> PatientIdentity:
    return PatientIdentity(name='Ben Okafor', phone='555-0102', patient_id='patient-b')
