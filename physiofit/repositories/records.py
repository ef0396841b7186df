# physiofit/repositories/records.py
"""
Translation between storage rows (snake_case columns, loosely typed cells)
and the domain dataclasses. Applied only at the sync boundary.
"""
from datetime import date
from typing import Any, Optional

import pandas as pd

from physiofit.config import BOOKINGS_TAB, COURSES_TAB, USERS_TAB
from physiofit.models.booking import Booking, BookingStatus
from physiofit.models.course import Course
from physiofit.models.user import Role, User, username_from_email

Record = dict[str, Any]


def _text(x) -> str:
    if x is None:
        return ""
    return str(x).strip()


def _opt_text(x) -> Optional[str]:
    s = _text(x)
    return s or None


def int_id(x) -> Optional[int]:
    s = _text(x)
    if not s:
        return None
    if s.isdigit():
        return int(s)
    # older sheets may hold 3.0 for a numeric cell
    return int(float(s))


def _parse_date(x) -> date:
    if isinstance(x, date):
        return x
    return pd.Timestamp(_text(x)).date()


# -----------------------------
# Users
# -----------------------------
def user_from_row(row: Record) -> User:
    email = _text(row.get("email")).lower()
    return User(
        id=int_id(row.get("id")),
        first_name=_text(row.get("first_name")),
        last_name=_text(row.get("last_name")),
        email=email,
        username=_text(row.get("username")) or username_from_email(email),
        password=_text(row.get("password")),
        role=Role(_text(row.get("role")) or Role.MEMBER.value),
    )


def user_to_row(user: User) -> Record:
    row = {
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "username": user.username,
        "password": user.password,
        "role": user.role.value,
    }
    if user.id is not None:
        row["id"] = user.id
    return row


# -----------------------------
# Courses
# -----------------------------
def course_from_row(row: Record) -> Course:
    return Course(
        id=_text(row.get("id")),
        name=_text(row.get("name")),
        time=_text(row.get("time")),
        date=_parse_date(row.get("date")),
        date_display=_text(row.get("date_display")),
        day_of_week=_text(row.get("day_of_week")),
    )


def course_to_row(course: Course) -> Record:
    return {
        "id": course.id,
        "name": course.name,
        "time": course.time,
        "date": course.date.isoformat(),
        "date_display": course.date_display,
        "day_of_week": course.day_of_week,
    }


# -----------------------------
# Bookings
# -----------------------------
def booking_from_row(row: Record) -> Booking:
    return Booking(
        id=int_id(row.get("id")),
        user_id=int_id(row.get("user_id")),
        course_id=_text(row.get("course_id")),
        status=BookingStatus(_text(row.get("status")) or BookingStatus.PENDING.value),
        timestamp=_text(row.get("timestamp")),
        cancelled_at=_opt_text(row.get("cancellation_date")),
        cancelled_by=_opt_text(row.get("cancelled_by")),
    )


def booking_to_row(booking: Booking) -> Record:
    row = {
        "user_id": booking.user_id,
        "course_id": booking.course_id,
        "status": booking.status.value,
        "timestamp": booking.timestamp,
        "cancellation_date": booking.cancelled_at or "",
        "cancelled_by": booking.cancelled_by or "",
    }
    if booking.id is not None:
        row["id"] = booking.id
    return row


FROM_ROW = {
    USERS_TAB: user_from_row,
    COURSES_TAB: course_from_row,
    BOOKINGS_TAB: booking_from_row,
}
TO_ROW = {
    USERS_TAB: user_to_row,
    COURSES_TAB: course_to_row,
    BOOKINGS_TAB: booking_to_row,
}


def from_row(table: str, row: Optional[Record]):
    if row is None:
        return None
    return FROM_ROW[table](row)


def to_row(table: str, obj) -> Record:
    return TO_ROW[table](obj)
