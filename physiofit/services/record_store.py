import logging
from dataclasses import dataclass
from enum import Enum
from random import randrange
from time import time_ns
from typing import Any, Callable, Iterable, Optional, Protocol

log = logging.getLogger(__name__)

Record = dict[str, Any]
Filter = Optional[dict[str, Any]]


class EventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """One change-feed notification, in storage column naming."""

    event_type: EventType
    table: str
    new_record: Optional[Record] = None
    old_record: Optional[Record] = None


ChangeCallback = Callable[[ChangeEvent], None]


def matches(record: Record, where: Filter) -> bool:
    """Equality filter; values compared as text since sheet cells come back typed."""
    if not where:
        return True
    return all(str(record.get(k, "")) == str(v) for k, v in where.items())


class Subscription:
    """
    A change-feed subscription. Push stores deliver events as they happen;
    polling stores deliver them from poll(). cancel() stops delivery.
    """

    def __init__(self, table: str, callback: ChangeCallback, events: Optional[Iterable[EventType]] = None):
        self.table = table
        self.callback = callback
        self.events = frozenset(events) if events else frozenset(EventType)
        self.active = True

    def deliver(self, event: ChangeEvent) -> None:
        if not self.active or event.table != self.table or event.event_type not in self.events:
            return
        self.callback(event)

    def poll(self) -> int:
        return 0

    def cancel(self) -> None:
        self.active = False


class RecordStore(Protocol):
    """Capability set of the hosted database the app syncs against."""

    def ping(self) -> None: ...

    def select(self, table: str, where: Filter = None) -> list[Record]: ...

    def insert(self, table: str, records: list[Record]) -> list[Record]: ...

    def update(self, table: str, where: Filter, patch: Record) -> list[Record]: ...

    def delete(self, table: str, where: Filter) -> None: ...

    def upsert(self, table: str, records: list[Record], conflict_key: str = "id") -> list[Record]: ...

    def subscribe_changes(
        self,
        table: str,
        callback: ChangeCallback,
        events: Optional[Iterable[EventType]] = None,
    ) -> Subscription: ...


def next_numeric_id(records: Iterable[Record], key: str = "id") -> int:
    nums = []
    for r in records:
        v = r.get(key)
        if isinstance(v, int):
            nums.append(v)
        elif isinstance(v, str) and v.strip().isdigit():
            nums.append(int(v.strip()))
    return (max(nums) + 1) if nums else 1


_ID_SPREAD = 100_000


def new_record_id(taken: Iterable = ()) -> int:
    """
    Id for a record appended to a shared store: milliseconds since the
    epoch followed by five random digits, redrawn while it is in `taken`.
    """
    taken = {str(t) for t in taken}
    while True:
        rid = (time_ns() // 1_000_000) * _ID_SPREAD + randrange(_ID_SPREAD)
        if str(rid) not in taken:
            return rid
