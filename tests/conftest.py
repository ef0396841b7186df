from datetime import date

import pytest

from physiofit.errors import StoreUnavailableError
from physiofit.services.bookings import BookingManager
from physiofit.services.memory_store import MemoryRecordStore
from physiofit.services.schedule import course_id_for
from physiofit.services.sync import DataSync

MONDAY = date(2025, 1, 6)

TEMPLATE = {
    "Mon": [
        {"time": "08:45–09:30", "name": "Fle.xx"},
        {"time": "09:45–10:30", "name": "Fle.xx"},
    ],
    "Tue": [{"time": "18:00–18:45", "name": "TRX"}],
    "Sat": [{"time": "10:00–11:00", "name": "Weekend Bootcamp"}],
}

USERS = [
    {"first_name": "Admin", "last_name": "User", "email": "admin@studio.test", "password": "admin123", "role": "Admin"},
    {"first_name": "John", "last_name": "Doe", "email": "john@studio.test", "password": "member123", "role": "Member"},
    {"first_name": "Jane", "last_name": "Smith", "email": "jane@studio.test", "password": "member456", "role": "Member"},
]

FLEXX_MONDAY = course_id_for(MONDAY, "08:45–09:30", "Fle.xx")
TRX_TUESDAY = course_id_for(date(2025, 1, 7), "18:00–18:45", "TRX")


class FlakyStore(MemoryRecordStore):
    """MemoryRecordStore whose writes can be switched to fail like a dropped connection."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.failing: set[str] = set()

    def _check(self, op: str) -> None:
        if op in self.failing:
            raise StoreUnavailableError()

    def insert(self, table, records):
        self._check("insert")
        return super().insert(table, records)

    def update(self, table, where, patch):
        self._check("update")
        return super().update(table, where, patch)

    def delete(self, table, where):
        self._check("delete")
        return super().delete(table, where)

    def select(self, table, where=None):
        self._check("select")
        return super().select(table, where)


@pytest.fixture
def remote():
    return FlakyStore()


@pytest.fixture
def make_manager(remote):
    def _make(*, with_remote=True, today=MONDAY, blobs=None, store=None):
        sync = DataSync(
            (store or remote) if with_remote else None,
            MemoryRecordStore({} if blobs is None else blobs),
        )
        manager = BookingManager(
            sync,
            weekly_template=TEMPLATE,
            window_days=28,
            today=lambda: today,
            default_users=USERS,
        )
        manager.start()
        return manager

    return _make


@pytest.fixture
def manager(make_manager):
    return make_manager()


@pytest.fixture
def admin(manager):
    return manager.collections.find_user(email="admin@studio.test")


@pytest.fixture
def member(manager):
    return manager.collections.find_user(email="john@studio.test")


@pytest.fixture
def other_member(manager):
    return manager.collections.find_user(email="jane@studio.test")
