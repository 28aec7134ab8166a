"""
Gmail API transport and OAuth handling.

Tokens are stored per account as authorized-user JSON files. A missing or
unrefreshable token, or a 401/403 from the API, surfaces as
AuthorizationRequiredError so callers can send the user through consent.
"""

import logging
import os
import re
from typing import Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from expense_sync import database
from expense_sync.scraper import AuthorizationRequiredError

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]
SELECTED_ACCOUNT_SETTING = "gmail_account"

_DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")
CLIENT_SECRETS_PATH = os.getenv(
    "GMAIL_CLIENT_SECRETS", os.path.join(_DATA_DIR, "credentials.json")
)
TOKEN_DIR = os.getenv("GMAIL_TOKEN_DIR", os.path.join(_DATA_DIR, "tokens"))

_AUTH_STATUSES = {401, 403}


# ---------------------------------------------------------------------------
# Account selection
# ---------------------------------------------------------------------------

def get_selected_account() -> Optional[str]:
    account = database.get_setting(SELECTED_ACCOUNT_SETTING)
    return account.strip() if account and account.strip() else None


def set_selected_account(account_id: str) -> None:
    database.set_setting(SELECTED_ACCOUNT_SETTING, account_id.strip())


def token_path(account_id: str) -> str:
    safe = re.sub(r"[^A-Za-z0-9@._-]", "_", account_id)
    return os.path.join(TOKEN_DIR, f"token_{safe}.json")


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

def load_credentials(account_id: str) -> Credentials:
    """Load (and refresh if needed) the stored token for an account."""
    path = token_path(account_id)
    if not os.path.exists(path):
        raise AuthorizationRequiredError(account_id)

    creds = Credentials.from_authorized_user_file(path, SCOPES)
    if creds.valid:
        return creds

    if not (creds.expired and creds.refresh_token):
        raise AuthorizationRequiredError(account_id)

    try:
        logger.info("Refreshing Gmail credentials for %s", account_id)
        creds.refresh(Request())
    except RefreshError as e:
        raise AuthorizationRequiredError(
            account_id,
            f"Gmail access for {account_id} was revoked or expired ({e}). "
            f"Run `expense-sync auth {account_id}` again.",
        ) from e

    _save_credentials(path, creds)
    return creds


def _save_credentials(path: str, creds: Credentials) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write(creds.to_json())


def authorize_account(account_id: str, client_secrets_path: Optional[str] = None) -> Credentials:
    """Run the browser consent flow and store the resulting token."""
    secrets = client_secrets_path or CLIENT_SECRETS_PATH
    if not os.path.exists(secrets):
        raise FileNotFoundError(
            f"OAuth client secrets not found at {secrets}. Download them from "
            f"the Google Cloud Console and set GMAIL_CLIENT_SECRETS."
        )

    flow = InstalledAppFlow.from_client_secrets_file(secrets, SCOPES)
    creds = flow.run_local_server(port=0, login_hint=account_id)
    _save_credentials(token_path(account_id), creds)
    logger.info("Stored Gmail credentials for %s", account_id)
    return creds


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class GmailTransport:
    """Mail transport over ``users.messages`` of the Gmail API."""

    def __init__(self, service, account_id: str):
        self.service = service
        self.account_id = account_id

    def _execute(self, request):
        try:
            return request.execute()
        except HttpError as e:
            if e.resp.status in _AUTH_STATUSES:
                raise AuthorizationRequiredError(self.account_id) from e
            raise

    def search(self, query: str, max_results: int) -> list[str]:
        results = self._execute(
            self.service.users().messages().list(
                userId="me", q=query, maxResults=max_results,
            )
        )
        return [m["id"] for m in results.get("messages", [])]

    def fetch(self, message_id: str) -> dict:
        return self._execute(
            self.service.users().messages().get(
                userId="me", id=message_id, format="full",
            )
        )


def gmail_transport_factory(account_id: str) -> GmailTransport:
    """Build an authorized transport for an account."""
    creds = load_credentials(account_id)
    service = build("gmail", "v1", credentials=creds, cache_discovery=False)
    return GmailTransport(service, account_id)
