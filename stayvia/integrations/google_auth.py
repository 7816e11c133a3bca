"""
StayVia Reminders — Google Calendar Authentication.

Rent due dates are mirrored onto a dedicated calendar in the user's own
Google account. Each user connects through a manual OAuth2 code flow in the
chat (/connect, then /code); the resulting token is stored per user.

A shared token on disk is still supported for single-user deployments and
for running this module directly to authorize once.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]
OOB_REDIRECT = "urn:ietf:wg:oauth:2.0:oob"


def _client_secrets_path() -> Path:
    from stayvia.config import settings

    creds_path = Path(settings.GOOGLE_CREDENTIALS_PATH)
    if not creds_path.exists():
        raise FileNotFoundError(
            f"Google credentials file not found at {creds_path}. "
            "Download it from the Google Cloud Console."
        )
    return creds_path


def get_calendar_service():
    """Return a Calendar API v3 service using the shared on-disk token.

    Refreshes an expired token and falls back to the interactive consent
    flow when there is no usable token. The token file is rewritten after.
    """
    from stayvia.config import settings

    token_path = Path(settings.GOOGLE_TOKEN_PATH)
    creds: Credentials | None = None

    if token_path.exists():
        creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)
        logger.debug("Loaded shared token from %s", token_path)

    if creds and creds.expired and creds.refresh_token:
        try:
            creds.refresh(Request())
            logger.info("Shared token refreshed")
        except Exception as exc:
            logger.warning("Token refresh failed (%s), re-authenticating", exc)
            creds = None

    if not creds or not creds.valid:
        flow = InstalledAppFlow.from_client_secrets_file(str(_client_secrets_path()), SCOPES)
        creds = flow.run_local_server(port=0)
        logger.info("New shared credentials obtained via OAuth2 consent flow")

    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json())

    return build("calendar", "v3", credentials=creds)


def get_google_auth_url() -> tuple[str, InstalledAppFlow]:
    """Start the manual OAuth2 flow for one user.

    Returns (auth_url, flow). The user opens auth_url, approves access and
    pastes the code back; keep `flow` around until then.
    """
    flow = InstalledAppFlow.from_client_secrets_file(
        str(_client_secrets_path()), SCOPES, redirect_uri=OOB_REDIRECT,
    )
    auth_url, _ = flow.authorization_url(prompt="consent")
    return auth_url, flow


def exchange_google_auth_code(flow: InstalledAppFlow, code: str) -> str:
    """Exchange the pasted code for credentials, as JSON for UserDB."""
    flow.fetch_token(code=code.strip())
    return flow.credentials.to_json()


def get_calendar_service_for_user(token_json: str):
    """Build a Calendar API service from a user's stored token JSON."""
    creds = Credentials.from_authorized_user_info(json.loads(token_json), SCOPES)
    if creds.expired and creds.refresh_token:
        creds.refresh(Request())
        logger.debug("Refreshed per-user Google token")
    return build("calendar", "v3", credentials=creds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    print("Running Google Calendar authorization flow...")
    svc = get_calendar_service()
    calendars = svc.calendarList().list().execute().get("items", [])
    print(f"Auth successful! {len(calendars)} calendar(s) visible.")
