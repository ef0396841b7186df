# physiofit/ui/state.py
import logging

import streamlit as st
from streamlit.errors import StreamlitAPIException

from physiofit.config import DEFAULT_USERS, Settings, load_settings
from physiofit.services.bookings import BookingManager
from physiofit.services.gsheets_client import credentials_json, get_spreadsheet
from physiofit.services.gsheets_store import GSheetsRecordStore
from physiofit.services.memory_store import MemoryRecordStore
from physiofit.services.sync import DataSync

log = logging.getLogger(__name__)

# Centralize keys to avoid typos across files
KEY_MANAGER = "manager"
KEY_FLASH = "_flash"
KEY_DO_RESET = "_do_reset"

KEY_FIRST_NAME = "new_user_first_name"
KEY_LAST_NAME = "new_user_last_name"
KEY_EMAIL = "new_user_email"
KEY_PASSWORD = "new_user_password"
KEY_ROLE = "new_user_role"


def read_secrets() -> dict:
    try:
        return dict(st.secrets)
    except (FileNotFoundError, StreamlitAPIException):
        # no secrets.toml: environment variables only
        return {}


def default_users_for(settings: Settings) -> list[dict]:
    users = [dict(u) for u in DEFAULT_USERS]
    if settings.admin_email and settings.admin_password:
        users[0].update(email=settings.admin_email, password=settings.admin_password)
    return users


def build_manager(settings: Settings, blobs) -> BookingManager:
    remote = None
    if settings.store_configured:
        creds = credentials_json(settings.google_credentials)
        remote = GSheetsRecordStore(lambda: get_spreadsheet(creds, settings.sheet_id))
    sync = DataSync(remote, MemoryRecordStore(blobs), timeout=settings.store_timeout)
    return BookingManager(
        sync,
        window_days=settings.window_days,
        timezone=settings.timezone,
        default_users=default_users_for(settings),
    )


def get_manager() -> BookingManager:
    """One manager per browser session, started on first use."""
    if KEY_MANAGER not in st.session_state:
        settings = load_settings(read_secrets())
        manager = build_manager(settings, st.session_state)
        manager.start()
        st.session_state[KEY_MANAGER] = manager
    return st.session_state[KEY_MANAGER]


def flash(message: str, kind: str = "success") -> None:
    """Queue a message to show after the next st.rerun()."""
    st.session_state[KEY_FLASH] = (kind, message)


def show_flash() -> None:
    item = st.session_state.pop(KEY_FLASH, None)
    if item is None:
        return
    kind, message = item
    getattr(st, kind)(message)


def mark_reset() -> None:
    st.session_state[KEY_DO_RESET] = True


def apply_reset_if_marked() -> None:
    """
    If you use a 'reset on next run' pattern, call this at the very top
    of the page BEFORE creating widgets.
    """
    if st.session_state.get(KEY_DO_RESET):
        st.session_state[KEY_FIRST_NAME] = ""
        st.session_state[KEY_LAST_NAME] = ""
        st.session_state[KEY_EMAIL] = ""
        st.session_state[KEY_PASSWORD] = ""
        st.session_state[KEY_DO_RESET] = False
