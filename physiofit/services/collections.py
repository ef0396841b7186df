import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from physiofit.errors import DuplicateBookingError, NotFoundError
from physiofit.models.booking import Booking, BookingStatus
from physiofit.models.course import Course
from physiofit.models.user import User

log = logging.getLogger(__name__)


@dataclass
class Snapshot:
    users: dict[int, User] = field(default_factory=dict)
    courses: dict[str, Course] = field(default_factory=dict)
    bookings: dict[int, Booking] = field(default_factory=dict)


class StudioCollections:
    """
    The in-memory users, courses and bookings of one client session.

    Only the lifecycle manager and the sync layer write here; views get
    read-only lists. Records are frozen dataclasses, so handing them out
    cannot change the collections behind our back.
    """

    def __init__(self):
        self._data = Snapshot()

    # -----------------------------
    # Bulk load / rollback
    # -----------------------------
    def replace_all(self, users: Iterable[User], courses: Iterable[Course], bookings: Iterable[Booking]) -> None:
        self._data = Snapshot(
            users={u.id: u for u in users},
            courses={c.id: c for c in courses},
            bookings={b.id: b for b in bookings},
        )

    def snapshot(self) -> Snapshot:
        return Snapshot(
            users=dict(self._data.users),
            courses=dict(self._data.courses),
            bookings=dict(self._data.bookings),
        )

    def restore(self, snap: Snapshot) -> None:
        self._data = Snapshot(
            users=dict(snap.users),
            courses=dict(snap.courses),
            bookings=dict(snap.bookings),
        )

    # -----------------------------
    # Users
    # -----------------------------
    def users(self) -> list[User]:
        return sorted(self._data.users.values(), key=lambda u: u.id)

    def get_user(self, user_id: int) -> Optional[User]:
        return self._data.users.get(user_id)

    def require_user(self, user_id: int) -> User:
        user = self.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found.")
        return user

    def find_user(self, *, email: Optional[str] = None, username: Optional[str] = None) -> Optional[User]:
        for u in self._data.users.values():
            if email is not None and u.email == email.strip().lower():
                return u
            if username is not None and u.username == username:
                return u
        return None

    def put_user(self, user: User) -> None:
        self._data.users[user.id] = user

    def remove_user(self, user_id: int) -> list[Booking]:
        """Drop a user and every booking they own; returns the dropped bookings."""
        self._data.users.pop(user_id, None)
        removed = [b for b in self._data.bookings.values() if b.user_id == user_id]
        for b in removed:
            del self._data.bookings[b.id]
        return removed

    # -----------------------------
    # Courses
    # -----------------------------
    def courses(self) -> list[Course]:
        return sorted(self._data.courses.values(), key=lambda c: (c.date, c.id))

    def get_course(self, course_id: str) -> Optional[Course]:
        return self._data.courses.get(course_id)

    def put_courses(self, courses: Iterable[Course]) -> None:
        for c in courses:
            self._data.courses[c.id] = c

    def remove_course(self, course_id: str) -> None:
        self._data.courses.pop(course_id, None)

    # -----------------------------
    # Bookings
    # -----------------------------
    def bookings(self) -> list[Booking]:
        return list(self._data.bookings.values())

    def get_booking(self, booking_id: int) -> Optional[Booking]:
        return self._data.bookings.get(booking_id)

    def require_booking(self, booking_id: int) -> Booking:
        booking = self.get_booking(booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found.")
        return booking

    def find_active_booking(self, user_id: int, course_id: str, *, exclude_id: Optional[int] = None) -> Optional[Booking]:
        for b in self._data.bookings.values():
            if b.id == exclude_id:
                continue
            if b.user_id == user_id and b.course_id == course_id and b.is_active:
                return b
        return None

    def bookings_for_user(self, user_id: int) -> list[Booking]:
        return [b for b in self._data.bookings.values() if b.user_id == user_id]

    def bookings_with_status(self, status: BookingStatus) -> list[Booking]:
        return [b for b in self._data.bookings.values() if b.status == status]

    def put_booking(self, booking: Booking) -> None:
        """
        Insert or replace a booking by id. At most one active booking per
        (user, course) pair may exist at any time.
        """
        if booking.is_active:
            clash = self.find_active_booking(booking.user_id, booking.course_id, exclude_id=booking.id)
            if clash is not None:
                raise DuplicateBookingError()
        self._data.bookings[booking.id] = booking

    def remove_booking(self, booking_id: int) -> Optional[Booking]:
        return self._data.bookings.pop(booking_id, None)
