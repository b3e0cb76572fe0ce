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

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./lessonbook.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS"), ["http://localhost:4200"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

# Booking policy
LESSON_DURATION_MINUTES = int(os.getenv("LESSON_DURATION_MINUTES", "60"))
MIN_ADVANCE_BOOKING_HOURS = int(os.getenv("MIN_ADVANCE_BOOKING_HOURS", "24"))
MAX_ADVANCE_BOOKING_DAYS = int(os.getenv("MAX_ADVANCE_BOOKING_DAYS", "365"))
TEACHER_RESPONSE_WINDOW_HOURS = int(os.getenv("TEACHER_RESPONSE_WINDOW_HOURS", "24"))
CANCEL_CUTOFF_HOURS = int(os.getenv("CANCEL_CUTOFF_HOURS", "0"))  # 0 disables the cutoff

# Expiration sweeper
SWEEPER_ENABLED = _get_bool(os.getenv("SWEEPER_ENABLED"), default=True)
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "300"))

# Schedule limits
CONFLICT_CHECK_DEFAULT_DAYS = int(os.getenv("CONFLICT_CHECK_DEFAULT_DAYS", "30"))
CONFLICT_CHECK_MAX_RANGE_DAYS = int(os.getenv("CONFLICT_CHECK_MAX_RANGE_DAYS", "365"))
BOOKABLE_RANGE_MAX_DAYS = int(os.getenv("BOOKABLE_RANGE_MAX_DAYS", "28"))
MAX_SLOTS_PER_TEACHER = int(os.getenv("MAX_SLOTS_PER_TEACHER", "50"))

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if LESSON_DURATION_MINUTES <= 0:
        raise RuntimeError("LESSON_DURATION_MINUTES must be positive.")
    if SWEEP_INTERVAL_SECONDS <= 0:
        raise RuntimeError("SWEEP_INTERVAL_SECONDS must be positive.")
