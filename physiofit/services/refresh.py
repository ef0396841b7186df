import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from physiofit.models.booking import Booking, BookingStatus
from physiofit.models.course import Course
from physiofit.models.user import User
from physiofit.services.collections import StudioCollections

log = logging.getLogger(__name__)


class Projection(str, Enum):
    COURSES = "courses"
    USER_BOOKINGS = "user_bookings"
    ALL_BOOKINGS = "all_bookings"
    PENDING = "pending"
    WAITING_LIST = "waiting_list"
    CANCELLED = "cancelled"
    ALL_USERS = "all_users"


class MutationKind(str, Enum):
    BOOKING_CREATED = "booking_created"
    BOOKING_UPDATED = "booking_updated"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_REMOVED = "booking_removed"
    USER_ADDED = "user_added"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"
    COURSES_CHANGED = "courses_changed"


ADMIN_PROJECTIONS = frozenset(
    {
        Projection.ALL_BOOKINGS,
        Projection.PENDING,
        Projection.WAITING_LIST,
        Projection.CANCELLED,
        Projection.ALL_USERS,
    }
)

_BOOKING_VIEWS = frozenset(
    {
        Projection.COURSES,
        Projection.USER_BOOKINGS,
        Projection.ALL_BOOKINGS,
        Projection.PENDING,
        Projection.WAITING_LIST,
        Projection.CANCELLED,
    }
)

REFRESH_TABLE: dict[MutationKind, frozenset[Projection]] = {
    MutationKind.BOOKING_CREATED: frozenset(
        {Projection.COURSES, Projection.USER_BOOKINGS, Projection.ALL_BOOKINGS, Projection.PENDING}
    ),
    MutationKind.BOOKING_UPDATED: _BOOKING_VIEWS,
    MutationKind.BOOKING_CANCELLED: _BOOKING_VIEWS,
    MutationKind.BOOKING_REMOVED: _BOOKING_VIEWS,
    MutationKind.USER_ADDED: frozenset({Projection.ALL_USERS}),
    MutationKind.USER_UPDATED: frozenset({Projection.ALL_USERS, Projection.USER_BOOKINGS, Projection.ALL_BOOKINGS}),
    MutationKind.USER_DELETED: frozenset(
        {
            Projection.ALL_USERS,
            Projection.ALL_BOOKINGS,
            Projection.PENDING,
            Projection.WAITING_LIST,
            Projection.CANCELLED,
        }
    ),
    MutationKind.COURSES_CHANGED: frozenset({Projection.COURSES, Projection.USER_BOOKINGS, Projection.ALL_BOOKINGS}),
}


@dataclass(frozen=True)
class BookingRow:
    booking: Booking
    user: Optional[User]
    course: Optional[Course]     # None once the course left the schedule


@dataclass(frozen=True)
class CourseRow:
    course: Course
    booking: Optional[Booking]   # the viewer's active booking, if any


RefreshListener = Callable[[Projection, list], None]


class ViewRefreshDispatcher:
    """
    Maps a mutation to the read-only views it affects and recomputes just
    those from the shared collections.
    """

    def __init__(self, collections: StudioCollections, schedule: Optional[Callable[[], list[Course]]] = None):
        self._collections = collections
        self._schedule = schedule or collections.courses
        self._listeners: list[RefreshListener] = []
        self.latest: dict[Projection, list] = {}

    def add_listener(self, listener: RefreshListener) -> None:
        self._listeners.append(listener)

    def projections_for(self, kind: MutationKind, viewer: Optional[User]) -> frozenset[Projection]:
        targets = REFRESH_TABLE[kind]
        if viewer is None or not viewer.is_admin:
            targets = targets - ADMIN_PROJECTIONS
        return targets

    def dispatch(self, kind: MutationKind, viewer: Optional[User]) -> dict[Projection, list]:
        return self._recompute(self.projections_for(kind, viewer), viewer)

    def refresh_all(self, viewer: Optional[User]) -> dict[Projection, list]:
        targets = frozenset(Projection)
        if viewer is None or not viewer.is_admin:
            targets = targets - ADMIN_PROJECTIONS
        return self._recompute(targets, viewer)

    def _recompute(self, targets: frozenset[Projection], viewer: Optional[User]) -> dict[Projection, list]:
        out = {}
        for projection in Projection:  # enum order keeps listener calls stable
            if projection not in targets:
                continue
            rows = self.compute(projection, viewer)
            out[projection] = rows
            self.latest[projection] = rows
            for listener in self._listeners:
                listener(projection, rows)
        log.debug("Refreshed %s", [p.value for p in out])
        return out

    # -----------------------------
    # Projections (pure reads)
    # -----------------------------
    def compute(self, projection: Projection, viewer: Optional[User]) -> list:
        c = self._collections
        if projection == Projection.COURSES:
            return self.course_rows(viewer)
        if projection == Projection.ALL_USERS:
            return c.users()
        if projection == Projection.USER_BOOKINGS:
            bookings = c.bookings_for_user(viewer.id) if viewer is not None else []
        elif projection == Projection.ALL_BOOKINGS:
            bookings = c.bookings()
        elif projection == Projection.PENDING:
            bookings = c.bookings_with_status(BookingStatus.PENDING)
        elif projection == Projection.WAITING_LIST:
            bookings = c.bookings_with_status(BookingStatus.WAITING_LIST)
        else:
            bookings = c.bookings_with_status(BookingStatus.CANCELLED)
        return self.booking_rows(bookings)

    def booking_rows(self, bookings: list[Booking]) -> list[BookingRow]:
        c = self._collections
        rows = [BookingRow(b, c.get_user(b.user_id), c.get_course(b.course_id)) for b in bookings]
        # latest first
        rows.sort(key=lambda r: (r.booking.timestamp, r.booking.id or 0), reverse=True)
        return rows

    def course_rows(self, viewer: Optional[User]) -> list[CourseRow]:
        c = self._collections
        rows = []
        for course in self._schedule():
            booking = c.find_active_booking(viewer.id, course.id) if viewer is not None else None
            rows.append(CourseRow(course, booking))
        return rows
