import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scheduling.database import SessionLocal, ensure_appointment_schema, ensure_slot_schema
from scheduling.exceptions import (
    IntegrityViolation,
    InvalidTransition,
    NotFound,
    ScheduleInUse,
    TransactionConflict,
)

logger = logging.getLogger(__name__)

SLOT_UNAVAILABLE_DETAIL = 'This time slot is no longer available. Please choose another time.'
DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'
INTEGRITY_DETAIL = 'Scheduling data conflict. Please contact support.'


def ensure_database_ready() -> None:
    try:
        ensure_slot_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def slot_unavailable() -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=SLOT_UNAVAILABLE_DETAIL)


@contextmanager
def scheduling_errors(db: Session) -> Iterator[None]:
    """Translate service errors into HTTP responses."""
    try:
        yield
    except HTTPException:
        raise
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except TransactionConflict as exc:
        raise slot_unavailable() from exc
    except (InvalidTransition, ScheduleInUse) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except IntegrityViolation as exc:
        logger.error('Integrity violation: %s', exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTEGRITY_DETAIL) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc
