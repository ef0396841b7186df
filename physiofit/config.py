import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

log = logging.getLogger(__name__)

USERS_TAB = "users"
COURSES_TAB = "courses"
BOOKINGS_TAB = "bookings"
TABLES = (USERS_TAB, COURSES_TAB, BOOKINGS_TAB)

USERS_HEADERS = [
    "id",
    "first_name",
    "last_name",
    "email",
    "username",
    "password",
    "role",
    "created_at",
]
COURSES_HEADERS = [
    "id",
    "name",
    "time",
    "date",                   # YYYY-MM-DD
    "date_display",           # Montag, 6. Januar 2025
    "day_of_week",            # Montag
    "created_at",
]
BOOKINGS_HEADERS = [
    "id",
    "user_id",
    "course_id",
    "status",
    "timestamp",
    "cancellation_date",
    "cancelled_by",
    "created_at",
]
HEADERS = {
    USERS_TAB: USERS_HEADERS,
    COURSES_TAB: COURSES_HEADERS,
    BOOKINGS_TAB: BOOKINGS_HEADERS,
}

WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]

DEFAULT_WEEKLY_TEMPLATE = {
    "Mon": [
        {"time": "08:45–09:30", "name": "Fle.xx"},
        {"time": "09:45–10:30", "name": "Fle.xx"},
        {"time": "16:30–17:15", "name": "Fle.xx"},
        {"time": "17:30–18:15", "name": "Fle.xx"},
    ],
    "Tue": [
        {"time": "09:30–10:15", "name": "Fle.xx"},
        {"time": "17:00–17:45", "name": "Fle.xx"},
        {"time": "18:00–18:45", "name": "TRX"},
        {"time": "19:00–19:45", "name": "TRX"},
    ],
    "Wed": [
        {"time": "08:45–09:00", "name": "Fle.xx"},
        {"time": "09:45–10:30", "name": "Fle.xx"},
        {"time": "17:15–18:00", "name": "Fle.xx"},
        {"time": "18:15–19:00", "name": "Fle.xx"},
    ],
    "Thu": [
        {"time": "18:15–19:00", "name": "Bauch, Beine, Po"},
        {"time": "19:00–20:00", "name": "Vinyasa Power Yoga"},
    ],
    "Fri": [
        {"time": "08:45–09:30", "name": "Fle.xx"},
        {"time": "09:45–10:30", "name": "Fle.xx"},
    ],
}

SCHEDULE_WINDOW_DAYS = 28
STORE_TIMEOUT_MIN = 10.0
STORE_TIMEOUT_MAX = 15.0
STUDIO_TIMEZONE = "Europe/Berlin"

# Seeded into an empty users table (plaintext, like the rest of the login)
DEFAULT_USERS = [
    {"first_name": "Admin", "last_name": "User", "email": "admin@saitama.com", "password": "admin123", "role": "Admin"},
    {"first_name": "John", "last_name": "Doe", "email": "john.doe@email.com", "password": "member123", "role": "Member"},
    {"first_name": "Jane", "last_name": "Smith", "email": "jane.smith@email.com", "password": "member456", "role": "Member"},
]

_PLACEHOLDER_PREFIX = "YOUR_"


@dataclass
class Settings:
    google_credentials: Optional[object]    # dict or JSON string
    sheet_id: str
    store_timeout: float = STORE_TIMEOUT_MIN
    window_days: int = SCHEDULE_WINDOW_DAYS
    timezone: str = STUDIO_TIMEZONE
    admin_email: str = ""
    admin_password: str = ""

    @property
    def store_configured(self) -> bool:
        return bool(self.google_credentials) and bool(self.sheet_id)


def _lookup(key: str, secrets: Mapping, environ: Mapping):
    if key in secrets:
        return secrets[key]
    return environ.get(key)


def _clean(value) -> Optional[object]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value or value.startswith(_PLACEHOLDER_PREFIX):
            return None
    return value


def load_settings(secrets: Optional[Mapping] = None, environ: Optional[Mapping] = None) -> Settings:
    """
    Resolve settings from Streamlit secrets first, then the environment.
    Missing Sheets credentials leave the app in local (no-store) mode.
    """
    secrets = secrets or {}
    environ = os.environ if environ is None else environ

    creds = _clean(_lookup("GOOGLE_SHEETS_CREDENTIALS", secrets, environ))
    sheet_id = _clean(_lookup("GOOGLE_SHEET_ID", secrets, environ)) or ""

    missing = [k for k, v in (("GOOGLE_SHEETS_CREDENTIALS", creds), ("GOOGLE_SHEET_ID", sheet_id)) if not v]
    if missing:
        log.warning("Missing or invalid store configuration for keys: %s", missing)
        log.warning("Bookings will be kept in local storage for this session only.")

    raw_timeout = _clean(_lookup("STORE_TIMEOUT_SECONDS", secrets, environ))
    timeout = float(raw_timeout) if raw_timeout is not None else STORE_TIMEOUT_MIN
    timeout = min(max(timeout, STORE_TIMEOUT_MIN), STORE_TIMEOUT_MAX)

    raw_window = _clean(_lookup("SCHEDULE_WINDOW_DAYS", secrets, environ))
    window_days = int(raw_window) if raw_window is not None else SCHEDULE_WINDOW_DAYS

    return Settings(
        google_credentials=creds,
        sheet_id=str(sheet_id),
        store_timeout=timeout,
        window_days=window_days,
        timezone=str(_clean(_lookup("STUDIO_TIMEZONE", secrets, environ)) or STUDIO_TIMEZONE),
        admin_email=str(_clean(_lookup("DEFAULT_ADMIN_EMAIL", secrets, environ)) or ""),
        admin_password=str(_clean(_lookup("DEFAULT_ADMIN_PASSWORD", secrets, environ)) or ""),
    )
