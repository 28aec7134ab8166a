import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from expense_sync import database
from expense_sync.models import Transaction, TransactionSource, TransactionType


def _txn(**overrides):
    fields = dict(
        date=datetime(2026, 10, 5, 14, 7, 12, 345000, tzinfo=timezone(timedelta(hours=5, minutes=30))),
        amount=250.0,
        type=TransactionType.DEBIT,
        source=TransactionSource.HDFC_UPI,
        description="Swiggy",
        category="Food",
    )
    fields.update(overrides)
    return Transaction(**fields)


def test_init_db_creates_tables(db):
    with database.get_connection() as conn:
        tables = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
    assert {"transactions", "settings"} <= tables


def test_init_db_is_idempotent(db):
    database.init_db()
    database.init_db()


def test_insert_and_read_back(db):
    original = _txn()
    assert database.insert_transactions([original]) == 1

    (stored,) = database.get_all_transactions()
    assert stored.id is not None
    assert stored.date == original.date
    assert stored.amount == 250.0
    assert stored.type == TransactionType.DEBIT
    assert stored.source == TransactionSource.HDFC_UPI
    assert stored.description == "Swiggy"
    assert stored.category == "Food"
    assert stored.is_manual is False


def test_insert_nothing(db):
    assert database.insert_transactions([]) == 0


def test_transactions_newest_first(db):
    older = _txn(date=datetime(2026, 1, 1, tzinfo=timezone.utc), description="old")
    newer = _txn(date=datetime(2026, 2, 1, tzinfo=timezone.utc), description="new")
    database.insert_transactions([older, newer])
    assert [t.description for t in database.get_all_transactions()] == ["new", "old"]


def test_failed_block_is_rolled_back(db):
    with pytest.raises(RuntimeError):
        with database.get_connection() as conn:
            database.insert_transactions([_txn()], conn)
            raise RuntimeError("abort")
    assert database.get_all_transactions() == []


def test_store_lock_blocks_other_writers(db):
    store = database.SqliteTransactionStore()
    with store.lock():
        store.insert_many([_txn()])
        other = sqlite3.connect(db, timeout=0)
        try:
            with pytest.raises(sqlite3.OperationalError):
                other.execute("BEGIN IMMEDIATE")
        finally:
            other.close()
        assert len(store.get_all()) == 1
    assert len(database.get_all_transactions()) == 1


def test_settings_roundtrip(db):
    assert database.get_setting("missing") is None
    database.set_setting("key", "one")
    database.set_setting("key", "two")
    assert database.get_setting("key") == "two"
    database.delete_setting("key")
    assert database.get_setting("key") is None
