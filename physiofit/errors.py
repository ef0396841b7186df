class BookingError(Exception):
    """Base for every error the booking app reports back to the user."""

    default_message = "Something went wrong."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# -----------------------------
# Business rules (never retried)
# -----------------------------
class DuplicateBookingError(BookingError):
    default_message = "You already have a booking for this course."


class UnknownCourseError(BookingError):
    default_message = "This course is not on the schedule."


class NotFoundError(BookingError):
    default_message = "Not found."


class InvalidTransitionError(BookingError):
    default_message = "This booking can no longer be changed."


class ForbiddenError(BookingError):
    default_message = "You are not allowed to do that."


class DuplicateUserError(BookingError):
    default_message = "A user with this email already exists."


# -----------------------------
# Infrastructure
# -----------------------------
class StoreUnavailableError(BookingError):
    default_message = "The booking database is unavailable. Your change was not saved."
