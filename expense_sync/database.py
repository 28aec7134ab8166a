import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from expense_sync.models import (
    Transaction,
    TransactionSource,
    TransactionType,
    from_epoch_millis,
    to_epoch_millis,
)

DB_PATH = os.getenv(
    "EXPENSE_SYNC_DB",
    os.path.join(os.path.dirname(os.path.dirname(__file__)), "data", "expense_sync.db"),
)


@contextmanager
def get_connection(db_path: Optional[str] = None, immediate: bool = False):
    """Yield a SQLite connection with row_factory set.

    With ``immediate=True`` the write lock is taken up front, so everything
    done on the connection runs as one unit against other writers.
    """
    conn = sqlite3.connect(db_path or DB_PATH, timeout=30, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
    try:
        yield conn
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


def init_db(db_path: Optional[str] = None):
    """Create tables if they don't exist."""
    path = db_path or DB_PATH
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)

    with get_connection(path) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                date INTEGER NOT NULL,
                amount REAL NOT NULL,
                category TEXT NOT NULL,
                type TEXT NOT NULL,
                source TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                is_manual INTEGER DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)


# ---------------------------------------------------------------------------
# Transaction helpers
# ---------------------------------------------------------------------------

def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        date=from_epoch_millis(row["date"]),
        amount=row["amount"],
        category=row["category"],
        type=TransactionType(row["type"]),
        source=TransactionSource(row["source"]),
        description=row["description"],
        is_manual=bool(row["is_manual"]),
    )


def get_all_transactions(conn: Optional[sqlite3.Connection] = None) -> list[Transaction]:
    """Return every stored transaction, newest first."""
    query = "SELECT * FROM transactions ORDER BY date DESC, id DESC"
    if conn is not None:
        rows = conn.execute(query).fetchall()
    else:
        with get_connection() as own:
            rows = own.execute(query).fetchall()
    return [_row_to_transaction(r) for r in rows]


def insert_transactions(
    txns: list[Transaction], conn: Optional[sqlite3.Connection] = None,
) -> int:
    """Bulk-insert transactions. Returns number of rows inserted."""
    if not txns:
        return 0
    rows = [
        {
            "date": to_epoch_millis(t.date),
            "amount": t.amount,
            "category": t.category,
            "type": t.type.value,
            "source": t.source.value,
            "description": t.description,
            "is_manual": int(t.is_manual),
        }
        for t in txns
    ]
    sql = """
        INSERT INTO transactions
            (date, amount, category, type, source, description, is_manual)
        VALUES
            (:date, :amount, :category, :type, :source, :description, :is_manual)
    """
    if conn is not None:
        conn.executemany(sql, rows)
    else:
        with get_connection() as own:
            own.executemany(sql, rows)
    return len(rows)


class SqliteTransactionStore:
    """Transaction store used by sync; ``lock()`` serialises reconcile+insert."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    @contextmanager
    def lock(self) -> Iterator["SqliteTransactionStore"]:
        with get_connection(self.db_path, immediate=True) as conn:
            self._conn = conn
            try:
                yield self
            finally:
                self._conn = None

    def get_all(self) -> list[Transaction]:
        if self._conn is not None:
            return get_all_transactions(self._conn)
        with get_connection(self.db_path) as conn:
            return get_all_transactions(conn)

    def insert_many(self, txns: list[Transaction]) -> int:
        if self._conn is not None:
            return insert_transactions(txns, self._conn)
        with get_connection(self.db_path) as conn:
            return insert_transactions(txns, conn)


# ---------------------------------------------------------------------------
# Settings helpers (key-value store for app configuration)
# ---------------------------------------------------------------------------

def get_setting(key: str) -> Optional[str]:
    """Retrieve a setting value by key. Returns None if not found."""
    with get_connection() as conn:
        row = conn.execute(
            "SELECT value FROM settings WHERE key = ?", (key,)
        ).fetchone()
    return row["value"] if row else None


def set_setting(key: str, value: str) -> None:
    """Store a setting (insert or update)."""
    with get_connection() as conn:
        conn.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
            (key, value),
        )


def delete_setting(key: str) -> None:
    """Remove a setting by key."""
    with get_connection() as conn:
        conn.execute("DELETE FROM settings WHERE key = ?", (key,))
