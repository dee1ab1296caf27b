import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _get_float(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    return float(value)


APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

# Granularity of candidate slot starts. A policy knob, not tied to service durations.
SLOT_INCREMENT_MINUTES = _get_int(os.getenv("SLOT_INCREMENT_MINUTES"), 30)
MAX_SLOT_SEARCH_DAYS = _get_int(os.getenv("MAX_SLOT_SEARCH_DAYS"), 62)
SLOT_SEARCH_BUDGET_SECONDS = _get_float(os.getenv("SLOT_SEARCH_BUDGET_SECONDS"))

MAX_APPOINTMENT_NOTES_LENGTH = _get_int(os.getenv("MAX_APPOINTMENT_NOTES_LENGTH"), 1000)


def validate_runtime_config() -> None:
    if SLOT_INCREMENT_MINUTES < 1:
        raise RuntimeError("SLOT_INCREMENT_MINUTES must be a positive number of minutes.")
    if MAX_SLOT_SEARCH_DAYS < 1:
        raise RuntimeError("MAX_SLOT_SEARCH_DAYS must be at least 1.")
    if SLOT_SEARCH_BUDGET_SECONDS is not None and SLOT_SEARCH_BUDGET_SECONDS <= 0:
        raise RuntimeError("SLOT_SEARCH_BUDGET_SECONDS must be positive when set.")
    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point at a server database in production.")
