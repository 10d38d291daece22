from __future__ import annotations
from typing import Optional

import gspread
import streamlit as st
from google.oauth2.service_account import Credentials
from loguru import logger

from .config import Settings
from .errors import ValidationError
from .logging_setup import setup_logging
from .quotas import retry_429
from .wiring import App, build_app

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.readonly",
]


@st.cache_resource(show_spinner=False)
def get_gspread_client(service_account_file: Optional[str] = None) -> gspread.Client:
    """Service-account client; a JSON key file wins over Streamlit secrets."""
    if service_account_file:
        credentials = Credentials.from_service_account_file(service_account_file, scopes=SCOPES)
    else:
        creds_dict = dict(st.secrets.get("gcp_service_account", {}))  # type: ignore
        if not creds_dict:
            raise ValidationError("Missing service account (gcp_service_account secret or SM_SERVICE_ACCOUNT_FILE).")
        credentials = Credentials.from_service_account_info(creds_dict, scopes=SCOPES)
    return gspread.authorize(credentials)


@st.cache_resource(show_spinner=False)
def open_spreadsheet(spreadsheet_url: str, service_account_file: Optional[str] = None) -> gspread.Spreadsheet:
    client = get_gspread_client(service_account_file)
    return retry_429(client.open_by_url, spreadsheet_url)


def streamlit_identity() -> Optional[str]:
    """Signed-in user's email under Streamlit auth, else None."""
    if not st.user.get("is_logged_in"):
        return None
    return st.user.get("email")


def connect(settings: Settings, **kwargs) -> App:
    if not settings.spreadsheet_url:
        raise ValidationError("SM_SPREADSHEET_URL is not set.")
    setup_logging(settings)
    ss = open_spreadsheet(settings.spreadsheet_url, settings.service_account_file)
    kwargs.setdefault("resolve_identity", streamlit_identity)
    logger.info("connected to workbook {}", ss.id)
    return build_app(ss, settings, **kwargs)
