from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

import pytz


class BookingStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    REJECTED = "Rejected"
    WAITING_LIST = "Waiting List"
    CANCELLED = "Cancelled"


ACTIVE_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.WAITING_LIST}
)
TERMINAL_STATUSES = frozenset({BookingStatus.REJECTED, BookingStatus.CANCELLED})


def can_transition(current: BookingStatus, target: BookingStatus, *, by_admin: bool) -> bool:
    """
    Rejected and Cancelled are final. Admins move freely between the other
    states; members may only cancel.
    """
    if current in TERMINAL_STATUSES or current == target:
        return False
    if by_admin:
        return True
    return target == BookingStatus.CANCELLED


def utc_now_iso() -> str:
    return datetime.now(pytz.UTC).isoformat()


# -----------------------------
# Data model
# -----------------------------
@dataclass(frozen=True)
class Booking:
    id: Optional[int]            # assigned by the record store
    user_id: int
    course_id: str
    status: BookingStatus
    timestamp: str               # UTC ISO, creation time
    cancelled_at: Optional[str] = None
    cancelled_by: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def with_status(self, status: BookingStatus, *, actor_role: Optional[str] = None) -> "Booking":
        if status == BookingStatus.CANCELLED:
            return replace(
                self,
                status=status,
                cancelled_at=utc_now_iso(),
                cancelled_by=(actor_role or "member").lower(),
            )
        return replace(self, status=status)

    @staticmethod
    def create(*, user_id: int, course_id: str) -> "Booking":
        return Booking(
            id=None,
            user_id=int(user_id),
            course_id=str(course_id),
            status=BookingStatus.PENDING,
            timestamp=utc_now_iso(),
        )
