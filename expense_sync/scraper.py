"""
Scrape transactions from bank alert emails for one account.

For every configured source a search query is run against the mail
transport, each matching message is fetched in full, decoded and parsed.
A message that fails to fetch or parse is skipped; only authorization
failures abort the run, because the user has to grant access again.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional, Protocol

from expense_sync.body_decoder import decode_message
from expense_sync.categorizer import KeywordCategorizer
from expense_sync.extractors import parse_transaction
from expense_sync.models import SourceConfig, Transaction
from expense_sync.sources import build_query

logger = logging.getLogger(__name__)

MAX_RESULTS = 500


class AuthorizationRequiredError(Exception):
    """Raised when the mail account needs (re-)consent before it can be read."""

    def __init__(self, account_id: str, message: str = ""):
        self.account_id = account_id
        super().__init__(
            message
            or f"Gmail access for {account_id} is not authorized. "
               f"Run `expense-sync auth {account_id}` to grant read access."
        )


class NoAccountSelectedError(ValueError):
    """Raised when a sync is attempted without a mail account."""


class MailTransport(Protocol):
    def search(self, query: str, max_results: int) -> list[str]:
        ...

    def fetch(self, message_id: str) -> dict:
        ...


class TransactionScraper:
    """Runs the per-source search/fetch/parse loop for an account."""

    def __init__(
        self,
        transport_factory: Callable[[str], MailTransport],
        source_configs: Iterable[SourceConfig],
        categorizer: Optional[KeywordCategorizer] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.transport_factory = transport_factory
        self.source_configs = list(source_configs)
        self.categorizer = categorizer or KeywordCategorizer()
        self.clock = clock

    def scrape(
        self,
        account_id: Optional[str],
        days: int = 7,
        from_timestamp: Optional[datetime] = None,
    ) -> list[Transaction]:
        """Return every transaction parsed from the account's alert emails.

        Raises NoAccountSelectedError for a blank account before touching the
        network, and lets AuthorizationRequiredError through untouched.
        """
        if not account_id or not account_id.strip():
            raise NoAccountSelectedError("No mail account selected. Cannot sync.")
        account_id = account_id.strip()

        transport = self.transport_factory(account_id)
        now = self.clock()

        transactions: list[Transaction] = []
        total_candidates = 0
        skipped_errors = 0
        skipped_no_extract = 0

        for config in self.source_configs:
            query = build_query(config, days=days, from_timestamp=from_timestamp, now=now)
            logger.info("Searching %s: %s", config.source.value, query)
            message_ids = transport.search(query, MAX_RESULTS)
            total_candidates += len(message_ids)

            for message_id in message_ids:
                try:
                    message = transport.fetch(message_id)
                    txn = parse_transaction(
                        decode_message(message),
                        config.source,
                        phrases=config.description_phrases,
                        categorizer=self.categorizer,
                        now=now,
                    )
                except AuthorizationRequiredError:
                    raise
                except Exception as e:
                    logger.warning("Error processing message %s: %s", message_id, e)
                    skipped_errors += 1
                    continue

                if txn:
                    transactions.append(txn)
                else:
                    skipped_no_extract += 1

        logger.info(
            "Scrape summary for %s: %d candidates, %d extracted, "
            "%d failed, %d without amount",
            account_id, total_candidates, len(transactions),
            skipped_errors, skipped_no_extract,
        )
        return transactions
