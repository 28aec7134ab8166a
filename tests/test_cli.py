import pytest
from rich.console import Console
from typer.testing import CliRunner

from expense_sync import cli, database, gmail
from expense_sync.cli import app
from expense_sync.models import TransactionSource
from expense_sync.scraper import AuthorizationRequiredError
from expense_sync.sources import DEFAULT_SOURCE_CONFIGS, get_source_configs

runner = CliRunner()


@pytest.fixture
def icici_factory(monkeypatch, fake_transport, gmail_message):
    transport = fake_transport(
        {"icicibank.com": ["c1"]},
        {"c1": gmail_message("Card alert", plain="Rs 1,499.00 spent. Merchant: AMAZON RETAIL on 05-10-2026.")},
    )
    monkeypatch.setattr(gmail, "gmail_transport_factory", lambda _: transport)
    return transport


# --- Sources ---

def test_sources_list(db, monkeypatch):
    monkeypatch.setattr(cli, "console", Console(width=200))
    result = runner.invoke(app, ["sources", "list"])
    assert result.exit_code == 0
    assert "ICICI_CREDIT_CARD" in result.output
    assert "credit_cards@icicibank.com" in result.output


def test_sources_set_and_reset(db):
    result = runner.invoke(app, [
        "sources", "set", "hdfc_upi",
        "-a", "alerts@mybank.test", "-a", "upi@mybank.test",
        "-k", "UPI", "-p", "towards",
    ])
    assert result.exit_code == 0, result.output
    config = get_source_configs()[TransactionSource.HDFC_UPI]
    assert config.email_addresses == ("alerts@mybank.test", "upi@mybank.test")
    assert config.subject_keywords == ("UPI",)
    assert config.description_phrases == ("towards",)

    result = runner.invoke(app, ["sources", "reset", "HDFC_UPI"])
    assert result.exit_code == 0
    assert "reverted" in result.output
    assert get_source_configs() == dict(DEFAULT_SOURCE_CONFIGS)


@pytest.mark.parametrize("source", ["MANUAL", "AXIS_UPI"])
def test_sources_set_rejects_unknown_source(db, source):
    result = runner.invoke(app, ["sources", "set", source, "-a", "x@y.test"])
    assert result.exit_code == 2


def test_sources_set_rejects_blank_address(db):
    result = runner.invoke(app, ["sources", "set", "SBI_UPI", "-a", " "])
    assert result.exit_code == 2
    assert get_source_configs() == dict(DEFAULT_SOURCE_CONFIGS)


def test_sources_queries(db):
    result = runner.invoke(app, ["sources", "queries", "--days", "3"])
    assert result.exit_code == 0
    assert "ICICI_CREDIT_CARD: from:credit_cards@icicibank.com subject:transaction after:" in result.output
    assert "HDFC_UPI: (from:noreply@hdfcbank.net OR from:alerts@hdfcbank.net) subject:UPI after:" in result.output


# --- Sync ---

def test_sync_without_account(db, icici_factory):
    result = runner.invoke(app, ["sync"])
    assert result.exit_code == 1
    assert "expense-sync auth" in result.output


def test_sync_stores_new_transactions(db, icici_factory):
    result = runner.invoke(app, ["sync", "--account", "me@gmail.com", "--days", "10"])
    assert result.exit_code == 0, result.output
    assert "Successfully synced 1 transactions from the past 10 days: 1 new, 0 already stored." in result.output
    (txn,) = database.get_all_transactions()
    assert txn.description == "AMAZON RETAIL"
    assert txn.category == "Shopping"

    result = runner.invoke(app, ["sync", "--account", "me@gmail.com"])
    assert "0 new, 1 already stored." in result.output


def test_sync_uses_selected_account_and_since(db, icici_factory):
    gmail.set_selected_account("me@gmail.com")
    result = runner.invoke(app, ["sync", "--since", "2026-07-01"])
    assert result.exit_code == 0, result.output
    assert "since 2026-07-01" in result.output
    assert all(q.endswith("after:2026/7/1") for q, _ in icici_factory.queries)


def test_sync_months_are_thirty_days(db, icici_factory):
    result = runner.invoke(app, ["sync", "--account", "me@gmail.com", "--months", "2"])
    assert result.exit_code == 0, result.output
    assert "from the past 60 days" in result.output


def test_sync_rejects_days_and_months_together(db, icici_factory):
    result = runner.invoke(app, ["sync", "--account", "me@gmail.com", "--days", "3", "--months", "1"])
    assert result.exit_code == 2


def test_sync_authorization_required(db, monkeypatch):
    def factory(account_id):
        raise AuthorizationRequiredError(account_id)

    monkeypatch.setattr(gmail, "gmail_transport_factory", factory)
    result = runner.invoke(app, ["sync", "--account", "me@gmail.com"])
    assert result.exit_code == 1
    assert "needs your permission" in result.output


def test_sync_other_failure(db, monkeypatch):
    def factory(account_id):
        raise ConnectionError()

    monkeypatch.setattr(gmail, "gmail_transport_factory", factory)
    result = runner.invoke(app, ["sync", "--account", "me@gmail.com"])
    assert result.exit_code == 1
    assert "Sync failed: ConnectionError" in result.output


def test_auth_without_client_secrets(db, monkeypatch, tmp_path):
    monkeypatch.setattr(gmail, "CLIENT_SECRETS_PATH", str(tmp_path / "missing.json"))
    result = runner.invoke(app, ["auth", "me@gmail.com"])
    assert result.exit_code == 1
    assert "client secrets not found" in result.output
    assert gmail.get_selected_account() is None


def test_auth_remembers_account(db, monkeypatch):
    authorized = []
    monkeypatch.setattr(gmail, "authorize_account", authorized.append)
    result = runner.invoke(app, ["auth", "me@gmail.com"])
    assert result.exit_code == 0
    assert authorized == ["me@gmail.com"]
    assert gmail.get_selected_account() == "me@gmail.com"
