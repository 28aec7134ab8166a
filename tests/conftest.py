import base64

import pytest

from expense_sync import database


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Point the app at a fresh temp database."""
    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(database, "DB_PATH", db_path)
    database.init_db()
    return db_path


def b64(text: str) -> str:
    """Gmail-style base64url without padding."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


@pytest.fixture
def gmail_message():
    """Build a Gmail API ``format=full`` message resource."""

    def _make(subject="", plain=None, html=None, date="Mon, 05 Oct 2026 14:07:00 +0530"):
        headers = [{"name": "Subject", "value": subject}]
        if date is not None:
            headers.append({"name": "Date", "value": date})
        parts = []
        if plain is not None:
            parts.append({"mimeType": "text/plain", "body": {"data": b64(plain)}})
        if html is not None:
            parts.append({"mimeType": "text/html", "body": {"data": b64(html)}})
        return {
            "id": "msg",
            "payload": {
                "mimeType": "multipart/alternative",
                "headers": headers,
                "body": {"size": 0},
                "parts": parts,
            },
        }

    return _make


class FakeTransport:
    """In-memory mail transport: search results keyed by a query substring."""

    def __init__(self, results, messages):
        self.results = results
        self.messages = messages
        self.queries = []
        self.fetched = []

    def search(self, query, max_results):
        self.queries.append((query, max_results))
        for needle, ids in self.results.items():
            if needle in query:
                return list(ids)
        return []

    def fetch(self, message_id):
        self.fetched.append(message_id)
        value = self.messages[message_id]
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def fake_transport():
    return FakeTransport
