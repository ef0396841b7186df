import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from physiofit.config import BOOKINGS_TAB, COURSES_TAB, STORE_TIMEOUT_MIN, TABLES, USERS_TAB
from physiofit.errors import NotFoundError, StoreUnavailableError
from physiofit.repositories.records import from_row, int_id, to_row
from physiofit.services.memory_store import MemoryRecordStore
from physiofit.services.record_store import ChangeEvent, EventType, RecordStore, Subscription

log = logging.getLogger(__name__)


class SyncMode(str, Enum):
    REMOTE = "remote"      # hosted store is authoritative, local blobs are a backup
    LOCAL = "local"        # no reachable store; local blobs are authoritative


@dataclass(frozen=True)
class RecordChange:
    """A change-feed event decoded into domain objects."""

    event_type: EventType
    table: str
    new_record: Optional[Any] = None
    old_id: Optional[Any] = None


@dataclass
class LoadedData:
    users: list
    courses: list
    bookings: list


def _decode_id(table: str, raw) -> Optional[Any]:
    if raw is None or str(raw).strip() == "":
        return None
    if table == COURSES_TAB:
        return str(raw).strip()
    return int_id(raw)


class DataSync:
    """
    Moves domain objects between the in-memory collections and the record
    store, with the local blob store standing in when the hosted store is
    missing or unreachable.
    """

    def __init__(
        self,
        remote: Optional[RecordStore],
        local: MemoryRecordStore,
        timeout: float = STORE_TIMEOUT_MIN,
    ):
        self.remote = remote
        self.local = local
        self.timeout = timeout
        self.mode = SyncMode.LOCAL
        self._subs: list[Subscription] = []

    @property
    def store(self) -> RecordStore:
        return self.remote if self.mode == SyncMode.REMOTE else self.local

    @property
    def is_remote(self) -> bool:
        return self.mode == SyncMode.REMOTE

    # -----------------------------
    # Connection test
    # -----------------------------
    def connect(self) -> SyncMode:
        if self.remote is None:
            log.info("No record store configured, using local storage")
            self.mode = SyncMode.LOCAL
            return self.mode

        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="store-ping")
        future = pool.submit(self.remote.ping)
        try:
            future.result(timeout=self.timeout)
        except FuturesTimeout:
            log.warning("Record store did not answer within %.0fs, falling back to local storage", self.timeout)
            self.mode = SyncMode.LOCAL
        except StoreUnavailableError as e:
            log.warning("Record store unreachable (%s), falling back to local storage", e)
            self.mode = SyncMode.LOCAL
        else:
            log.info("Record store connection established")
            self.mode = SyncMode.REMOTE
        finally:
            # a hung ping must not block the session
            pool.shutdown(wait=False)
        return self.mode

    # -----------------------------
    # Reads
    # -----------------------------
    def _decode_rows(self, table: str, rows: Iterable[dict]) -> list:
        out = []
        for row in rows:
            try:
                out.append(from_row(table, row))
            except (TypeError, ValueError) as e:
                log.warning("Skipping malformed %s row %r: %s", table, row.get("id"), e)
        return out

    def load_table(self, table: str) -> list:
        if self.is_remote:
            try:
                return self._decode_rows(table, self.remote.select(table))
            except StoreUnavailableError:
                log.error("Failed to load %s from the record store, using the local copy", table)
        return self._decode_rows(table, self.local.select(table))

    def load(self) -> LoadedData:
        data = LoadedData(
            users=self.load_table(USERS_TAB),
            courses=self.load_table(COURSES_TAB),
            bookings=self.load_table(BOOKINGS_TAB),
        )
        log.info(
            "Loaded %d users, %d courses, %d bookings (%s)",
            len(data.users), len(data.courses), len(data.bookings), self.mode.value,
        )
        return data

    def exists(self, table: str, where: dict) -> bool:
        return bool(self.store.select(table, where))

    # -----------------------------
    # Writes
    # -----------------------------
    def _mirror(self, fn: Callable[[MemoryRecordStore], Any]) -> None:
        if self.is_remote:
            fn(self.local)

    def save_new(self, table: str, obj):
        """Insert one object; returns it as stored (with its generated id)."""
        rows = self.store.insert(table, [to_row(table, obj)])
        saved = from_row(table, rows[0])
        self._mirror(lambda s: s.upsert(table, [to_row(table, saved)]))
        return saved

    def save(self, table: str, obj) -> None:
        row = to_row(table, obj)
        if not self.store.update(table, {"id": row["id"]}, row):
            raise NotFoundError(f"{table} record {row['id']} no longer exists.")
        self._mirror(lambda s: s.upsert(table, [row]))

    def save_many(self, table: str, objs: Iterable, conflict_key: str = "id") -> None:
        rows = [to_row(table, o) for o in objs]
        if not rows:
            return
        self.store.upsert(table, rows, conflict_key)
        self._mirror(lambda s: s.upsert(table, rows, conflict_key))

    def remove(self, table: str, where: dict) -> None:
        self.store.delete(table, where)
        self._mirror(lambda s: s.delete(table, where))

    # -----------------------------
    # Change feed
    # -----------------------------
    def _decode_event(self, event: ChangeEvent) -> Optional[RecordChange]:
        try:
            if event.event_type == EventType.DELETE:
                old = event.old_record or {}
                return RecordChange(event.event_type, event.table, old_id=_decode_id(event.table, old.get("id")))
            new = from_row(event.table, event.new_record)
            return RecordChange(event.event_type, event.table, new_record=new, old_id=getattr(new, "id", None))
        except (TypeError, ValueError) as e:
            log.warning("Ignoring undecodable %s %s event: %s", event.table, event.event_type.value, e)
            return None

    def subscribe(self, callback: Callable[[RecordChange], Any]) -> None:
        """Feed remote inserts/updates/deletes of every table into callback."""
        if not self.is_remote:
            return

        def _handler(event: ChangeEvent) -> None:
            change = self._decode_event(event)
            if change is not None:
                callback(change)

        for table in TABLES:
            try:
                self._subs.append(self.remote.subscribe_changes(table, _handler))
            except StoreUnavailableError:
                log.error("Could not subscribe to %s changes", table)

    def pump(self) -> int:
        """Drive polling subscriptions; returns the number of events delivered."""
        delivered = 0
        for sub in self._subs:
            try:
                delivered += sub.poll()
            except StoreUnavailableError:
                log.warning("Polling %s changes failed", sub.table)
        return delivered

    def close(self) -> None:
        for sub in self._subs:
            sub.cancel()
        self._subs = []
