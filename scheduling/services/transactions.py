"""Transaction helpers shared by the booking allocators.

Every booking runs as a single unit of work: the work function locks what it
needs, decides, and mutates; this module commits or rolls back around it and
retries lock conflicts with capped exponential backoff plus jitter.
"""

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session
from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from scheduling.core import config
from scheduling.exceptions import TransactionConflict, Unavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# lock_not_available, serialization_failure, deadlock_detected
CONFLICT_SQLSTATES = frozenset({"55P03", "40001", "40P01"})
SQLITE_LOCK_MESSAGES = ("database is locked", "database table is locked")


def _sqlstate(exc: DBAPIError) -> str | None:
    original = exc.orig
    # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate.
    return getattr(original, "pgcode", None) or getattr(original, "sqlstate", None)


def is_lock_conflict(exc: DBAPIError) -> bool:
    if _sqlstate(exc) in CONFLICT_SQLSTATES:
        return True
    message = str(exc.orig).lower()
    return any(marker in message for marker in SQLITE_LOCK_MESSAGES)


def violates(exc: IntegrityError, *markers: str) -> bool:
    """Return True when the integrity error names one of the given constraints or columns."""
    message = str(exc.orig)
    return any(marker in message for marker in markers)


def apply_lock_timeout(db: Session, timeout_ms: int | None = None) -> None:
    if db.get_bind().dialect.name != "postgresql":
        return
    timeout = int(timeout_ms or config.BOOKING_LOCK_TIMEOUT_MS)
    db.execute(text(f"SET LOCAL lock_timeout = '{timeout}ms'"))


def is_retryable_conflict(exc: BaseException) -> bool:
    if isinstance(exc, TransactionConflict):
        return True
    return isinstance(exc, DBAPIError) and is_lock_conflict(exc)


def backoff_wait() -> wait_base:
    """Capped exponential backoff plus uniform jitter, read from config on each call."""
    return wait_exponential(
        multiplier=config.BOOKING_BACKOFF_BASE_SECONDS,
        max=config.BOOKING_BACKOFF_CAP_SECONDS,
    ) + wait_random(0, config.BOOKING_BACKOFF_JITTER_SECONDS)


def run_in_transaction(
    db: Session,
    work: Callable[[Session], T],
    *,
    label: str,
    max_attempts: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``work`` as one transaction, retrying lock conflicts.

    ``work`` must not commit. An ``Unavailable`` result rolls the transaction
    back; any other result is committed. Lock timeouts, serialization failures
    and ``TransactionConflict`` raised by ``work`` are retried up to
    ``max_attempts`` times before ``TransactionConflict`` is raised to the caller.
    """
    attempts = max(1, max_attempts or config.BOOKING_MAX_ATTEMPTS)

    def attempt() -> T:
        try:
            apply_lock_timeout(db)
            result = work(db)
            if isinstance(result, Unavailable):
                db.rollback()
            else:
                db.commit()
            return result
        except Exception:
            db.rollback()
            raise

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=backoff_wait(),
        retry=retry_if_exception(is_retryable_conflict),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
    )
    try:
        return retrying(attempt)
    except RetryError as exc:
        conflict = exc.last_attempt.exception()
        logger.warning('%s gave up after %d attempts: %s', label, attempts, conflict)
        raise TransactionConflict(f'{label} could not acquire the slot lock.') from conflict
