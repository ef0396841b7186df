import json

import gspread
import streamlit as st
from google.oauth2.service_account import Credentials

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]


def credentials_json(creds) -> str:
    """Normalise secrets (TOML table or JSON text) to a JSON string cache key."""
    if isinstance(creds, str):
        return creds
    return json.dumps(dict(creds), sort_keys=True)


# -----------------------------
# Google Sheets client (safe to cache)
# -----------------------------
@st.cache_resource
def get_gsheets_client(creds_json: str):
    credentials = Credentials.from_service_account_info(json.loads(creds_json), scopes=SCOPES)
    return gspread.authorize(credentials)


@st.cache_resource
def get_spreadsheet(creds_json: str, sheet_id: str):
    client = get_gsheets_client(creds_json)
    return client.open_by_key(sheet_id)
