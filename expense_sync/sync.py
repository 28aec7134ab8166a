"""Scrape, categorise, deduplicate and store transactions in one call."""

import logging
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from expense_sync.categorizer import KeywordCategorizer
from expense_sync.dedup import filter_new_transactions
from expense_sync.models import Transaction
from expense_sync.scraper import TransactionScraper

logger = logging.getLogger(__name__)


class TransactionStore(Protocol):
    def lock(self) -> AbstractContextManager:
        ...

    def get_all(self) -> list[Transaction]:
        ...

    def insert_many(self, txns: list[Transaction]) -> int:
        ...


@dataclass
class SyncResult:
    scraped: int = 0
    inserted: list[Transaction] = field(default_factory=list)

    @property
    def duplicates(self) -> int:
        return self.scraped - len(self.inserted)


def sync_transactions(
    scraper: TransactionScraper,
    store: TransactionStore,
    account_id: Optional[str],
    days: int = 7,
    from_timestamp: Optional[datetime] = None,
    categorizer: Optional[KeywordCategorizer] = None,
) -> SyncResult:
    """Scrape the account and insert only transactions not already stored.

    Reading the existing keys and inserting happen under the store's lock,
    so a concurrent sync cannot slip the same rows in between.
    """
    candidates = scraper.scrape(account_id, days=days, from_timestamp=from_timestamp)

    categorizer = categorizer or scraper.categorizer
    candidates = [categorizer.categorize_transaction(t) for t in candidates]

    with store.lock():
        fresh = filter_new_transactions(store.get_all(), candidates)
        if fresh:
            store.insert_many(fresh)

    logger.info(
        "%d new transaction(s) after dedup (%d duplicates skipped).",
        len(fresh), len(candidates) - len(fresh),
    )
    return SyncResult(scraped=len(candidates), inserted=fresh)
