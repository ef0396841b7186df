import logging
from datetime import date
from typing import Callable, Optional

from physiofit.config import (
    BOOKINGS_TAB,
    COURSES_TAB,
    DEFAULT_USERS,
    SCHEDULE_WINDOW_DAYS,
    STUDIO_TIMEZONE,
    USERS_TAB,
)
from physiofit.errors import (
    BookingError,
    DuplicateBookingError,
    DuplicateUserError,
    ForbiddenError,
    InvalidTransitionError,
    StoreUnavailableError,
    UnknownCourseError,
)
from physiofit.models.booking import Booking, BookingStatus, can_transition
from physiofit.models.course import Course
from physiofit.models.user import Role, User
from physiofit.services.collections import StudioCollections
from physiofit.services.record_store import EventType
from physiofit.services.refresh import MutationKind, Projection, ViewRefreshDispatcher
from physiofit.services.schedule import WeeklyTemplate, generate_schedule, studio_today
from physiofit.services.sync import DataSync, RecordChange

log = logging.getLogger(__name__)


class BookingManager:
    """
    Owns the booking lifecycle for one client session.

    Every mutation follows the same order: change the collections, persist
    through DataSync, roll the collections back if persisting fails, then
    refresh the affected views. Remote change-feed events enter through
    apply_change() and use the same collection operations.
    """

    def __init__(
        self,
        sync: DataSync,
        *,
        collections: Optional[StudioCollections] = None,
        weekly_template: Optional[WeeklyTemplate] = None,
        window_days: int = SCHEDULE_WINDOW_DAYS,
        today: Optional[Callable[[], date]] = None,
        timezone: str = STUDIO_TIMEZONE,
        default_users: Optional[list[dict]] = None,
    ):
        self.sync = sync
        self.collections = collections or StudioCollections()
        self.weekly_template = weekly_template
        self.window_days = window_days
        self._today = today or (lambda: studio_today(timezone))
        self.default_users = DEFAULT_USERS if default_users is None else default_users
        self.dispatcher = ViewRefreshDispatcher(self.collections, schedule=self.current_schedule)
        self.viewer: Optional[User] = None

    # -----------------------------
    # Startup
    # -----------------------------
    def start(self) -> None:
        """Connect, load, seed and subscribe. Call once per session."""
        self.sync.connect()
        self.load()
        self.seed_defaults()
        self.sync.subscribe(self.apply_change)

    def load(self) -> None:
        data = self.sync.load()
        self.collections.replace_all(data.users, data.courses, data.bookings)
        self.collections.put_courses(self.current_schedule())

    def current_schedule(self) -> list[Course]:
        return generate_schedule(self.weekly_template, self._today(), self.window_days)

    def seed_defaults(self) -> None:
        if not self.collections.users():
            for spec in self.default_users:
                user = User.create(**spec)
                try:
                    saved = self.sync.save_new(USERS_TAB, user)
                except StoreUnavailableError:
                    log.error("Could not seed default user %s", user.email)
                    continue
                self.collections.put_user(saved)
                log.info("Seeded default user %s (%s)", saved.email, saved.role.value)
        self.sync_schedule()

    def sync_schedule(self) -> list[Course]:
        """Write the current 4-week window to the courses table (upsert by id)."""
        courses = self.current_schedule()
        try:
            self.sync.save_many(COURSES_TAB, courses)
        except StoreUnavailableError:
            log.error("Could not publish the schedule; keeping it in memory only")
        self.collections.put_courses(courses)
        self._refresh(MutationKind.COURSES_CHANGED)
        return courses

    # -----------------------------
    # Session
    # -----------------------------
    def authenticate(self, email: str, password: str) -> Optional[User]:
        """Plaintext comparison against the stored record, as the studio has always done."""
        user = self.collections.find_user(email=email)
        if user is None or user.password != password:
            log.info("Login failed for %s", email)
            return None
        self.viewer = user
        log.info("Login %s (%s)", user.email, user.role.value)
        self.dispatcher.refresh_all(user)
        return user

    def logout(self) -> None:
        self.viewer = None
        self.dispatcher.latest.clear()

    def projection(self, projection: Projection) -> list:
        if projection not in self.dispatcher.latest:
            return self.dispatcher.compute(projection, self.viewer)
        return self.dispatcher.latest[projection]

    def course_status_for(self, user_id: int, course_id: str) -> Optional[Booking]:
        return self.collections.find_active_booking(user_id, course_id)

    def _actor(self, actor: Optional[User]) -> User:
        actor = actor or self.viewer
        if actor is None:
            raise ForbiddenError("You must be logged in.")
        return actor

    def _refresh(self, kind: MutationKind) -> None:
        self.dispatcher.dispatch(kind, self.viewer)

    def _persist(self, snap, persist: Callable[[], object], what: str) -> None:
        try:
            persist()
        except BookingError:
            self.collections.restore(snap)
            log.error("%s not saved, local change rolled back", what)
            raise

    # -----------------------------
    # Bookings
    # -----------------------------
    def create_booking(self, user_id: int, course_id: str, actor: Optional[User] = None) -> Booking:
        actor = self._actor(actor)
        user = self.collections.require_user(user_id)
        if not actor.is_admin and actor.id != user.id:
            raise ForbiddenError("You can only book courses for yourself.")

        if self.collections.find_active_booking(user.id, course_id) is not None:
            raise DuplicateBookingError()
        if course_id not in {c.id for c in self.current_schedule()}:
            raise UnknownCourseError()
        if self.sync.is_remote and not self.sync.exists(COURSES_TAB, {"id": course_id}):
            raise UnknownCourseError("This course is not in the studio database.")

        # the store assigns the id, so the collection insert follows the store insert
        saved = self.sync.save_new(BOOKINGS_TAB, Booking.create(user_id=user.id, course_id=course_id))
        self.collections.put_booking(saved)
        log.info("Booking %s created: user=%s course=%s", saved.id, user.id, course_id)
        self._refresh(MutationKind.BOOKING_CREATED)
        return saved

    def _change_booking(self, updated: Booking, kind: MutationKind) -> Booking:
        snap = self.collections.snapshot()
        self.collections.put_booking(updated)
        self._persist(snap, lambda: self.sync.save(BOOKINGS_TAB, updated), f"Booking {updated.id}")
        log.info("Booking %s -> %s", updated.id, updated.status.value)
        self._refresh(kind)
        return updated

    def update_status(self, booking_id: int, new_status, actor: Optional[User] = None) -> Booking:
        actor = self._actor(actor)
        try:
            new_status = BookingStatus(new_status)
        except ValueError:
            raise InvalidTransitionError(f"Unknown booking status: {new_status}.") from None
        booking = self.collections.require_booking(booking_id)
        if not actor.is_admin:
            raise ForbiddenError("Only the studio can change a booking's status.")
        if not can_transition(booking.status, new_status, by_admin=True):
            raise InvalidTransitionError(
                f"A {booking.status.value} booking cannot be changed to {new_status.value}."
            )

        updated = booking.with_status(new_status, actor_role=actor.role.value)
        kind = MutationKind.BOOKING_CANCELLED if new_status == BookingStatus.CANCELLED else MutationKind.BOOKING_UPDATED
        return self._change_booking(updated, kind)

    def cancel_booking(self, booking_id: int, actor: Optional[User] = None) -> Booking:
        actor = self._actor(actor)
        booking = self.collections.require_booking(booking_id)
        if not actor.is_admin and booking.user_id != actor.id:
            raise ForbiddenError("You can only cancel your own bookings.")
        if not can_transition(booking.status, BookingStatus.CANCELLED, by_admin=actor.is_admin):
            raise InvalidTransitionError(f"A {booking.status.value} booking cannot be cancelled.")

        updated = booking.with_status(BookingStatus.CANCELLED, actor_role=actor.role.value)
        return self._change_booking(updated, MutationKind.BOOKING_CANCELLED)

    # -----------------------------
    # Users
    # -----------------------------
    def add_user(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        role=Role.MEMBER,
        actor: Optional[User] = None,
    ) -> User:
        actor = self._actor(actor)
        if not actor.is_admin:
            raise ForbiddenError("Only admins can add users.")

        user = User.create(first_name=first_name, last_name=last_name, email=email, password=password, role=role)
        if self.collections.find_user(email=user.email) is not None:
            raise DuplicateUserError()
        if self.collections.find_user(username=user.username) is not None:
            raise DuplicateUserError("A user with this email prefix already exists. Please choose a different email.")

        saved = self.sync.save_new(USERS_TAB, user)
        self.collections.put_user(saved)
        log.info("User %s added (%s)", saved.id, saved.role.value)
        self._refresh(MutationKind.USER_ADDED)
        return saved

    def delete_user(self, user_id: int, requesting_user: Optional[User] = None) -> list[Booking]:
        """Delete a user and all of their bookings; returns the removed bookings."""
        requesting_user = self._actor(requesting_user)
        if requesting_user.id == user_id:
            raise ForbiddenError("You cannot delete your own account.")
        if not requesting_user.is_admin:
            raise ForbiddenError("Only admins can delete users.")
        self.collections.require_user(user_id)

        snap = self.collections.snapshot()
        removed = self.collections.remove_user(user_id)

        def _persist():
            self.sync.remove(BOOKINGS_TAB, {"user_id": user_id})
            self.sync.remove(USERS_TAB, {"id": user_id})

        self._persist(snap, _persist, f"Deletion of user {user_id}")
        log.info("User %s deleted with %d bookings", user_id, len(removed))
        self._refresh(MutationKind.USER_DELETED)
        return removed

    # -----------------------------
    # Remote changes
    # -----------------------------
    def apply_change(self, change: RecordChange) -> bool:
        """
        Apply one change-feed event. Returns True when the collections
        changed (and views were refreshed); echoes of our own writes and
        events that would break a booking invariant are dropped.
        """
        handlers = {
            BOOKINGS_TAB: self._apply_booking_change,
            USERS_TAB: self._apply_user_change,
            COURSES_TAB: self._apply_course_change,
        }
        kind = handlers[change.table](change)
        if kind is None:
            return False
        self._refresh(kind)
        return True

    def _apply_booking_change(self, change: RecordChange) -> Optional[MutationKind]:
        if change.event_type == EventType.DELETE:
            removed = self.collections.remove_booking(change.old_id)
            return MutationKind.BOOKING_REMOVED if removed is not None else None

        incoming: Booking = change.new_record
        existing = self.collections.get_booking(incoming.id)
        if existing == incoming:
            return None
        if existing is not None and existing.status != incoming.status:
            if not can_transition(existing.status, incoming.status, by_admin=True):
                log.warning(
                    "Ignoring remote change of booking %s from %s to %s",
                    incoming.id, existing.status.value, incoming.status.value,
                )
                return None
        try:
            self.collections.put_booking(incoming)
        except DuplicateBookingError:
            log.warning(
                "Ignoring remote booking %s: user %s already has an active booking for %s",
                incoming.id, incoming.user_id, incoming.course_id,
            )
            return None

        if existing is None:
            return MutationKind.BOOKING_CREATED
        if incoming.status == BookingStatus.CANCELLED:
            return MutationKind.BOOKING_CANCELLED
        return MutationKind.BOOKING_UPDATED

    def _apply_user_change(self, change: RecordChange) -> Optional[MutationKind]:
        if change.event_type == EventType.DELETE:
            if self.collections.get_user(change.old_id) is None:
                return None
            removed = self.collections.remove_user(change.old_id)
            log.info("User %s removed remotely with %d bookings", change.old_id, len(removed))
            if self.viewer is not None and self.viewer.id == change.old_id:
                self.viewer = None
            return MutationKind.USER_DELETED

        incoming: User = change.new_record
        existing = self.collections.get_user(incoming.id)
        if existing == incoming:
            return None
        self.collections.put_user(incoming)
        if self.viewer is not None and self.viewer.id == incoming.id:
            self.viewer = incoming
        return MutationKind.USER_ADDED if existing is None else MutationKind.USER_UPDATED

    def _apply_course_change(self, change: RecordChange) -> Optional[MutationKind]:
        if change.event_type == EventType.DELETE:
            if self.collections.get_course(change.old_id) is None:
                return None
            self.collections.remove_course(change.old_id)
            return MutationKind.COURSES_CHANGED

        incoming: Course = change.new_record
        if self.collections.get_course(incoming.id) == incoming:
            return None
        self.collections.put_courses([incoming])
        return MutationKind.COURSES_CHANGED
