import logging
from enum import Enum
from typing import Callable, Iterable, Optional

from google.auth.exceptions import GoogleAuthError
from gspread.exceptions import GSpreadException, WorksheetNotFound

from physiofit.config import HEADERS
from physiofit.errors import StoreUnavailableError
from physiofit.models.booking import utc_now_iso
from physiofit.services.record_store import (
    ChangeCallback,
    ChangeEvent,
    EventType,
    Filter,
    Record,
    Subscription,
    matches,
    new_record_id,
)

log = logging.getLogger(__name__)

_FIRST_DATA_ROW = 2  # row 1 holds the headers


def _cell(value) -> str:
    """Cells are written as text; RAW input keeps "0123" and long ids intact."""
    if value is None:
        return ""
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _fingerprint(record: Record) -> dict:
    return {k: str(v) for k, v in record.items()}


class PollingSubscription(Subscription):
    """
    Sheets has no push channel: each poll() re-reads the table and turns the
    difference against the previous read into change events keyed by id.
    """

    def __init__(self, table: str, callback: ChangeCallback, fetch: Callable[[], list[Record]], events=None):
        super().__init__(table, callback, events)
        self._fetch = fetch
        self._snapshot = self._index(fetch())

    @staticmethod
    def _index(rows: list[Record]) -> dict[str, Record]:
        return {str(r.get("id")): r for r in rows if str(r.get("id", "")).strip()}

    def poll(self) -> int:
        if not self.active:
            return 0
        current = self._index(self._fetch())
        previous = self._snapshot
        self._snapshot = current

        events = []
        for key, row in current.items():
            if key not in previous:
                events.append(ChangeEvent(EventType.INSERT, self.table, new_record=row))
            elif _fingerprint(previous[key]) != _fingerprint(row):
                events.append(ChangeEvent(EventType.UPDATE, self.table, new_record=row, old_record=previous[key]))
        for key, row in previous.items():
            if key not in current:
                events.append(ChangeEvent(EventType.DELETE, self.table, old_record=row))

        for event in events:
            self.deliver(event)
        return len(events)


class GSheetsRecordStore:
    """
    Record store on a Google spreadsheet, one worksheet per table with the
    headers from config.HEADERS in row 1.
    """

    def __init__(self, open_spreadsheet: Callable[[], object]):
        self._open_spreadsheet = open_spreadsheet
        self._sh = None
        self._ws_cache: dict[str, object] = {}

    # -----------------------------
    # Sheet helpers
    # -----------------------------
    def _spreadsheet(self):
        if self._sh is None:
            self._sh = self._open_spreadsheet()
        return self._sh

    def _worksheet(self, table: str):
        """Cached per store to avoid repeated fetch_sheet_metadata calls."""
        if table in self._ws_cache:
            return self._ws_cache[table]

        sh = self._spreadsheet()
        headers = HEADERS[table]
        try:
            ws = sh.worksheet(table)  # this triggers metadata read (expensive)
        except WorksheetNotFound:
            log.info("Creating worksheet %s", table)
            ws = sh.add_worksheet(title=table, rows=1000, cols=len(headers))

        first_row = ws.row_values(1)
        if first_row != headers:
            ws.update(range_name="A1", values=[headers])

        self._ws_cache[table] = ws
        return ws

    def _records(self, table: str) -> list[Record]:
        # cells come back as text; records.py coerces ids and dates
        return self._worksheet(table).get_all_records(numericise_ignore=["all"])

    def _row_values(self, table: str, record: Record) -> list:
        return [_cell(record.get(h, "")) for h in HEADERS[table]]

    def _call(self, what: str, fn, *args):
        try:
            return fn(*args)
        except (GSpreadException, GoogleAuthError, OSError, ValueError) as e:
            # GoogleAuthError and ValueError: revoked or malformed service-account key
            log.error("Sheets %s failed: %s", what, e)
            raise StoreUnavailableError() from e

    # -----------------------------
    # RecordStore
    # -----------------------------
    def ping(self) -> None:
        self._call("ping", lambda: [self._worksheet(t) for t in HEADERS])

    def select(self, table: str, where: Filter = None) -> list[Record]:
        rows = self._call(f"select {table}", self._records, table)
        return [r for r in rows if matches(r, where)]

    def insert(self, table: str, records: list[Record]) -> list[Record]:
        return self._call(f"insert {table}", self._insert, table, records)

    def _insert(self, table: str, records: list[Record]) -> list[Record]:
        if not records:
            return []
        ws = self._worksheet(table)
        taken = set(ws.col_values(1)[1:])
        now = utc_now_iso()

        inserted = []
        for rec in records:
            row = dict(rec)
            if row.get("id") in (None, ""):
                # unique across sessions appending at the same time
                row["id"] = new_record_id(taken)
            if not row.get("created_at"):
                row["created_at"] = now
            taken.add(str(row["id"]))
            inserted.append(row)

        ws.append_rows([self._row_values(table, r) for r in inserted], value_input_option="RAW")
        return inserted

    def update(self, table: str, where: Filter, patch: Record) -> list[Record]:
        return self._call(f"update {table}", self._update, table, where, patch)

    def _update(self, table: str, where: Filter, patch: Record) -> list[Record]:
        ws = self._worksheet(table)
        changed = []
        batch = []
        for i, row in enumerate(self._records(table)):
            if not matches(row, where):
                continue
            new = {**row, **patch}
            changed.append(new)
            batch.append({"range": f"A{i + _FIRST_DATA_ROW}", "values": [self._row_values(table, new)]})
        if batch:
            ws.batch_update(batch, value_input_option="RAW")
        return changed

    def delete(self, table: str, where: Filter) -> None:
        self._call(f"delete {table}", self._delete, table, where)

    def _delete(self, table: str, where: Filter) -> None:
        ws = self._worksheet(table)
        rownums = [i + _FIRST_DATA_ROW for i, row in enumerate(self._records(table)) if matches(row, where)]
        # bottom-up so earlier deletions don't shift later row numbers
        for n in reversed(rownums):
            ws.delete_rows(n)

    def upsert(self, table: str, records: list[Record], conflict_key: str = "id") -> list[Record]:
        return self._call(f"upsert {table}", self._upsert, table, records, conflict_key)

    def _upsert(self, table: str, records: list[Record], conflict_key: str) -> list[Record]:
        ws = self._worksheet(table)
        current = self._records(table)
        position = {str(r.get(conflict_key)): i for i, r in enumerate(current)}

        out = []
        batch = []
        new_rows = []
        for rec in records:
            key = str(rec.get(conflict_key, ""))
            if key and key in position:
                i = position[key]
                merged = {**current[i], **rec}
                batch.append({"range": f"A{i + _FIRST_DATA_ROW}", "values": [self._row_values(table, merged)]})
                out.append(merged)
            else:
                new_rows.append(rec)

        if batch:
            ws.batch_update(batch, value_input_option="RAW")
        if new_rows:
            out.extend(self._insert(table, new_rows))
        return out

    def subscribe_changes(
        self,
        table: str,
        callback: ChangeCallback,
        events: Optional[Iterable[EventType]] = None,
    ) -> Subscription:
        return PollingSubscription(table, callback, lambda: self.select(table), events)
