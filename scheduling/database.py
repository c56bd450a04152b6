from threading import Lock

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from scheduling.core import config


def build_engine(database_url: str, echo: bool = False) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Request handlers run on a thread pool and share pooled connections.
        connect_args = {
            "check_same_thread": False,
            "timeout": config.BOOKING_LOCK_TIMEOUT_MS / 1000,
        }

    new_engine = create_engine(database_url, echo=echo, connect_args=connect_args)

    if new_engine.dialect.name == "sqlite":
        event.listen(new_engine, "connect", _configure_sqlite_connection)
        event.listen(new_engine, "begin", _begin_sqlite_immediate)

    return new_engine


def _configure_sqlite_connection(dbapi_connection, _connection_record) -> None:
    # SQLite has no row locks. Transactions take the write lock up front instead,
    # which serializes writers through the busy timeout rather than failing on upgrade.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _begin_sqlite_immediate(connection) -> None:
    connection.exec_driver_sql("BEGIN IMMEDIATE")


engine = build_engine(config.DATABASE_URL, echo=config.SQL_ECHO)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_slot_schema_checked = False
_appointment_schema_checked = False


def ensure_slot_schema() -> None:
    global _slot_schema_checked

    if _slot_schema_checked:
        return

    with _schema_lock:
        if _slot_schema_checked:
            return

        inspector = inspect(engine)

        if 'doctor_time_slots' not in inspector.get_table_names():
            _slot_schema_checked = True
            return

        with engine.begin() as connection:
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_slots_doctor_date_status '
                    'ON doctor_time_slots(doctor_id, slot_date, status)'
                )
            )

        _slot_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        with engine.begin() as connection:
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_doctor_date '
                    'ON appointments(doctor_id, appointment_date, time_slot)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_status ON appointments(status)')
            )

        _appointment_schema_checked = True
