import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./scheduling.db")
SQL_ECHO = _get_bool(os.getenv("SQL_ECHO"), default=False)

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:4200"])

# Booking transactions
BOOKING_LOCK_TIMEOUT_MS = int(os.getenv("BOOKING_LOCK_TIMEOUT_MS", "2000"))
BOOKING_MAX_ATTEMPTS = int(os.getenv("BOOKING_MAX_ATTEMPTS", "3"))
BOOKING_BACKOFF_BASE_SECONDS = float(os.getenv("BOOKING_BACKOFF_BASE_SECONDS", "0.05"))
BOOKING_BACKOFF_CAP_SECONDS = float(os.getenv("BOOKING_BACKOFF_CAP_SECONDS", "0.5"))
BOOKING_BACKOFF_JITTER_SECONDS = float(os.getenv("BOOKING_BACKOFF_JITTER_SECONDS", "0.05"))

APPOINTMENT_CODE_MAX_ATTEMPTS = int(os.getenv("APPOINTMENT_CODE_MAX_ATTEMPTS", "3"))

# Slot generation
SLOT_GENERATION_MAX_DAYS = int(os.getenv("SLOT_GENERATION_MAX_DAYS", "90"))
DEFAULT_SLOT_DURATION_MINUTES = int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES", "30"))


def validate_runtime_config() -> None:
    if BOOKING_MAX_ATTEMPTS < 1:
        raise RuntimeError("BOOKING_MAX_ATTEMPTS must be at least 1.")
    if APPOINTMENT_CODE_MAX_ATTEMPTS < 1:
        raise RuntimeError("APPOINTMENT_CODE_MAX_ATTEMPTS must be at least 1.")
    if BOOKING_LOCK_TIMEOUT_MS <= 0:
        raise RuntimeError("BOOKING_LOCK_TIMEOUT_MS must be positive.")
    if DEFAULT_SLOT_DURATION_MINUTES <= 0:
        raise RuntimeError("DEFAULT_SLOT_DURATION_MINUTES must be positive.")
    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point at Postgres in production.")
