import re

import pytest
from gspread.exceptions import WorksheetNotFound

from physiofit.config import BOOKINGS_HEADERS, BOOKINGS_TAB, HEADERS, USERS_TAB
from physiofit.errors import StoreUnavailableError
from physiofit.models.user import Role, User
from physiofit.repositories.records import to_row, user_from_row
from physiofit.services import record_store
from physiofit.services.gsheets_store import GSheetsRecordStore
from physiofit.services.record_store import EventType


def _numericise(value):
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return value


class FakeWorksheet:
    """Just enough of gspread.Worksheet for the record store."""

    def __init__(self, title):
        self.title = title
        self.rows: list[list] = []
        self.broken = False

    def _check(self):
        if self.broken:
            raise ConnectionError("connection reset by peer")

    def row_values(self, n):
        self._check()
        return list(self.rows[n - 1]) if len(self.rows) >= n else []

    def col_values(self, n):
        self._check()
        return [str(r[n - 1]) for r in self.rows if len(r) >= n]

    def update(self, range_name, values):
        assert range_name == "A1"
        if self.rows:
            self.rows[0] = list(values[0])
        else:
            self.rows.append(list(values[0]))

    def get_all_records(self, numericise_ignore=None):
        self._check()
        convert = (lambda v: v) if numericise_ignore == ["all"] else _numericise
        headers = self.rows[0]
        return [
            {h: convert(v) for h, v in zip(headers, row + [""] * (len(headers) - len(row)))}
            for row in self.rows[1:]
        ]

    def append_rows(self, values, value_input_option=None):
        self._check()
        self.rows.extend(list(row) for row in values)

    def batch_update(self, data, value_input_option=None):
        self._check()
        for item in data:
            n = int(re.match(r"A(\d+)", item["range"]).group(1))
            self.rows[n - 1] = list(item["values"][0])

    def delete_rows(self, n):
        self._check()
        del self.rows[n - 1]


class FakeSpreadsheet:
    def __init__(self):
        self.sheets: dict[str, FakeWorksheet] = {}
        self.metadata_reads = 0

    def worksheet(self, title):
        self.metadata_reads += 1
        if title not in self.sheets:
            raise WorksheetNotFound(title)
        return self.sheets[title]

    def add_worksheet(self, title, rows, cols):
        self.sheets[title] = FakeWorksheet(title)
        return self.sheets[title]


@pytest.fixture
def sheet():
    return FakeSpreadsheet()


@pytest.fixture
def store(sheet):
    return GSheetsRecordStore(lambda: sheet)


def _booking_row(user_id, course_id="2025-01-06_08450930_Flexx", status="Pending"):
    return {"user_id": user_id, "course_id": course_id, "status": status, "timestamp": "2025-01-06T09:00:00+00:00"}


def _ids(rows):
    return [int(r["id"]) for r in rows]


def test_ping_creates_worksheets_with_headers(store, sheet):
    store.ping()
    assert set(sheet.sheets) == set(HEADERS)
    for table, headers in HEADERS.items():
        assert sheet.sheets[table].rows[0] == headers


def test_worksheet_lookup_is_cached(store, sheet):
    store.select(BOOKINGS_TAB)
    store.select(BOOKINGS_TAB)
    store.insert(BOOKINGS_TAB, [_booking_row(1)])
    assert sheet.metadata_reads == 1


def test_insert_writes_text_cells_in_header_order(store, sheet):
    rows = store.insert(BOOKINGS_TAB, [_booking_row(1), _booking_row(2)])
    first, second = _ids(rows)
    assert first != second

    raw = sheet.sheets[BOOKINGS_TAB].rows
    assert raw[0] == BOOKINGS_HEADERS
    assert raw[1][:4] == [str(first), "1", "2025-01-06_08450930_Flexx", "Pending"]
    assert raw[1][BOOKINGS_HEADERS.index("created_at")] != ""


def test_ids_do_not_follow_the_column_maximum(store, monkeypatch):
    # same millisecond and same first draw: the taken id is redrawn
    monkeypatch.setattr(record_store, "time_ns", lambda: 1_736_150_400_000_000_000)
    draws = iter([42, 42, 43])
    monkeypatch.setattr(record_store, "randrange", lambda n: next(draws))

    first = store.insert(BOOKINGS_TAB, [_booking_row(1)])[0]["id"]
    second = store.insert(BOOKINGS_TAB, [_booking_row(2)])[0]["id"]

    assert first == 1_736_150_400_000 * 100_000 + 42
    assert second == first + 1
    assert _ids(store.select(BOOKINGS_TAB)) == [first, second]


def test_new_record_id_redraws_taken_values(monkeypatch):
    monkeypatch.setattr(record_store, "time_ns", lambda: 5_000_000)
    draws = iter([7, 7, 9])
    monkeypatch.setattr(record_store, "randrange", lambda n: next(draws))
    taken = {str(5 * 100_000 + 7)}
    assert record_store.new_record_id(taken) == 5 * 100_000 + 9


def test_leading_zero_text_survives(store):
    user = User.create(first_name="Bond", last_name="007", email="bond@studio.test", password="0123")
    store.insert(USERS_TAB, [to_row(USERS_TAB, user)])

    loaded = user_from_row(store.select(USERS_TAB)[0])
    assert loaded.password == "0123"
    assert loaded.last_name == "007"

    store.update(USERS_TAB, {"id": loaded.id}, {"role": "Admin"})
    again = user_from_row(store.select(USERS_TAB)[0])
    assert again.password == "0123"
    assert again.role == Role.ADMIN


def test_select_filters_by_text_value(store):
    ids = _ids(store.insert(BOOKINGS_TAB, [_booking_row(1), _booking_row(2), _booking_row(1, status="Cancelled")]))
    assert len(store.select(BOOKINGS_TAB, {"user_id": "1"})) == 2
    assert _ids(store.select(BOOKINGS_TAB, {"user_id": 1, "status": "Cancelled"})) == [ids[2]]


def test_update_rewrites_matching_rows(store):
    one, two = _ids(store.insert(BOOKINGS_TAB, [_booking_row(1), _booking_row(2)]))
    created = store.select(BOOKINGS_TAB, {"id": two})[0]["created_at"]
    changed = store.update(BOOKINGS_TAB, {"id": two}, {"status": "Confirmed"})

    assert _ids(changed) == [two]
    after = store.select(BOOKINGS_TAB, {"id": two})[0]
    assert after["status"] == "Confirmed"
    assert after["created_at"] == created
    assert store.select(BOOKINGS_TAB, {"id": one})[0]["status"] == "Pending"
    assert store.update(BOOKINGS_TAB, {"id": 99}, {"status": "Confirmed"}) == []


def test_delete_several_rows(store):
    ids = _ids(store.insert(BOOKINGS_TAB, [_booking_row(1), _booking_row(2), _booking_row(1), _booking_row(3)]))
    store.delete(BOOKINGS_TAB, {"user_id": 1})
    assert _ids(store.select(BOOKINGS_TAB)) == [ids[1], ids[3]]


def test_upsert_merges_and_appends(store):
    (existing,) = _ids(store.insert(BOOKINGS_TAB, [_booking_row(1)]))
    out = store.upsert(BOOKINGS_TAB, [{**_booking_row(1, status="Confirmed"), "id": existing}, _booking_row(5)])

    assert len(out) == 2
    rows = store.select(BOOKINGS_TAB)
    assert [r["status"] for r in rows] == ["Confirmed", "Pending"]
    assert int(rows[0]["id"]) == existing
    assert rows[1]["user_id"] == "5"


def test_none_and_enum_cells(store, sheet):
    store.insert(USERS_TAB, [{"email": "a@b.c", "role": Role.ADMIN, "password": None}])
    row = sheet.sheets[USERS_TAB].rows[1]
    headers = HEADERS[USERS_TAB]
    assert row[headers.index("role")] == "Admin"
    assert row[headers.index("password")] == ""


def test_connection_errors_become_store_unavailable(store, sheet):
    store.ping()
    sheet.sheets[BOOKINGS_TAB].broken = True
    with pytest.raises(StoreUnavailableError):
        store.select(BOOKINGS_TAB)
    with pytest.raises(StoreUnavailableError):
        store.insert(BOOKINGS_TAB, [_booking_row(1)])


def test_polling_subscription_reports_differences(store):
    events = []
    sub = store.subscribe_changes(BOOKINGS_TAB, events.append)
    assert sub.poll() == 0

    one, two = _ids(store.insert(BOOKINGS_TAB, [_booking_row(1), _booking_row(2)]))
    assert sub.poll() == 2
    assert [e.event_type for e in events] == [EventType.INSERT, EventType.INSERT]

    events.clear()
    store.update(BOOKINGS_TAB, {"id": one}, {"status": "Confirmed"})
    store.delete(BOOKINGS_TAB, {"id": two})
    assert sub.poll() == 2
    by_type = {e.event_type: e for e in events}
    assert by_type[EventType.UPDATE].new_record["status"] == "Confirmed"
    assert by_type[EventType.UPDATE].old_record["status"] == "Pending"
    assert int(by_type[EventType.DELETE].old_record["id"]) == two

    sub.cancel()
    store.insert(BOOKINGS_TAB, [_booking_row(3)])
    assert sub.poll() == 0


def test_subscription_event_filter(store):
    events = []
    sub = store.subscribe_changes(BOOKINGS_TAB, events.append, events=[EventType.DELETE])
    (booking_id,) = _ids(store.insert(BOOKINGS_TAB, [_booking_row(1)]))
    sub.poll()
    store.delete(BOOKINGS_TAB, {"id": booking_id})
    sub.poll()
    assert [e.event_type for e in events] == [EventType.DELETE]
