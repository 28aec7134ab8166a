"""
Duplicate detection between freshly scraped and already stored transactions.

The same alert email is seen again on every sync whose lookback window
covers it, so each scraped candidate is checked against the store before
insert. Two transactions are the same event when date (to the millisecond),
amount, source and description all match exactly.
"""

from typing import Iterable

from expense_sync.models import Transaction, to_epoch_millis

IdentityKey = tuple[int, float, str, str]


def identity_key(txn: Transaction) -> IdentityKey:
    """Return the (millis, amount, source, description) key of a transaction."""
    return (
        to_epoch_millis(txn.date),
        float(txn.amount),
        txn.source.value,
        txn.description,
    )


def filter_new_transactions(
    existing: Iterable[Transaction],
    candidates: Iterable[Transaction],
) -> list[Transaction]:
    """Drop candidates whose identity key is already present in ``existing``.

    Candidate order is preserved.
    """
    seen = {identity_key(t) for t in existing}
    return [t for t in candidates if identity_key(t) not in seen]
