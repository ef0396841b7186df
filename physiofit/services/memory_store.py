import copy
import json
import logging
from typing import Iterable, MutableMapping, Optional

from physiofit.config import TABLES
from physiofit.models.booking import utc_now_iso
from physiofit.services.record_store import (
    ChangeCallback,
    ChangeEvent,
    EventType,
    Filter,
    Record,
    Subscription,
    matches,
    next_numeric_id,
)

log = logging.getLogger(__name__)

BLOB_PREFIX = "physiofit_"


class MemoryRecordStore:
    """
    Record store kept in process memory.

    With a `blobs` mapping (st.session_state in the app, a dict in tests)
    every table is also saved as one JSON blob per collection after each
    write and read back on construction; this is the on-device fallback used
    when no hosted store is reachable.
    """

    def __init__(self, blobs: Optional[MutableMapping] = None, tables: Iterable[str] = TABLES):
        self._blobs = blobs
        self._tables: dict[str, list[Record]] = {t: [] for t in tables}
        self._subs: list[Subscription] = []
        if blobs is not None:
            for t in self._tables:
                self._tables[t] = self._load_blob(t)

    # -----------------------------
    # Blob persistence
    # -----------------------------
    def _load_blob(self, table: str) -> list[Record]:
        raw = self._blobs.get(BLOB_PREFIX + table)
        if not raw:
            return []
        try:
            rows = json.loads(raw)
        except (TypeError, ValueError):
            log.warning("Discarding unreadable local blob for %s", table)
            return []
        return rows if isinstance(rows, list) else []

    def _save_blob(self, table: str) -> None:
        if self._blobs is None:
            return
        self._blobs[BLOB_PREFIX + table] = json.dumps(self._tables[table], ensure_ascii=False, default=str)

    def _rows(self, table: str) -> list[Record]:
        return self._tables.setdefault(table, [])

    def _publish(self, event: ChangeEvent) -> None:
        self._subs = [s for s in self._subs if s.active]
        for sub in list(self._subs):
            sub.deliver(event)

    # -----------------------------
    # RecordStore
    # -----------------------------
    def ping(self) -> None:
        return None

    def select(self, table: str, where: Filter = None) -> list[Record]:
        return [copy.deepcopy(r) for r in self._rows(table) if matches(r, where)]

    def insert(self, table: str, records: list[Record]) -> list[Record]:
        rows = self._rows(table)
        now = utc_now_iso()
        inserted = []
        for rec in records:
            row = copy.deepcopy(rec)
            if row.get("id") in (None, ""):
                row["id"] = next_numeric_id(rows)
            if not row.get("created_at"):
                row["created_at"] = now
            rows.append(row)
            inserted.append(copy.deepcopy(row))
        self._save_blob(table)
        for row in inserted:
            self._publish(ChangeEvent(EventType.INSERT, table, new_record=copy.deepcopy(row)))
        return inserted

    def update(self, table: str, where: Filter, patch: Record) -> list[Record]:
        changed = []
        for row in self._rows(table):
            if matches(row, where):
                old = copy.deepcopy(row)
                row.update(copy.deepcopy(patch))
                changed.append((old, copy.deepcopy(row)))
        if changed:
            self._save_blob(table)
        for old, new in changed:
            self._publish(ChangeEvent(EventType.UPDATE, table, new_record=new, old_record=old))
        return [new for _, new in changed]

    def delete(self, table: str, where: Filter) -> None:
        rows = self._rows(table)
        removed = [r for r in rows if matches(r, where)]
        if not removed:
            return
        self._tables[table] = [r for r in rows if not matches(r, where)]
        self._save_blob(table)
        for row in removed:
            self._publish(ChangeEvent(EventType.DELETE, table, old_record=row))

    def upsert(self, table: str, records: list[Record], conflict_key: str = "id") -> list[Record]:
        out = []
        for rec in records:
            key = rec.get(conflict_key)
            existing = [r for r in self._rows(table) if key not in (None, "") and str(r.get(conflict_key)) == str(key)]
            if existing:
                out.extend(self.update(table, {conflict_key: key}, rec))
            else:
                out.extend(self.insert(table, [rec]))
        return out

    def subscribe_changes(self, table: str, callback: ChangeCallback, events=None) -> Subscription:
        sub = Subscription(table, callback, events)
        self._subs = [s for s in self._subs if s.active] + [sub]
        return sub
