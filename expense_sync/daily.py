"""
Headless daily sync: scrape the last week of alerts, store new ones, notify.

Never raises. The outcome tells the scheduler what to do next: SUCCESS and
SKIPPED need nothing, RETRY means run the whole batch again later.
"""

import logging
import os
from collections import Counter
from enum import Enum
from typing import Callable, Optional

import requests

from expense_sync import database, gmail
from expense_sync.categorizer import (
    CATEGORY_KEYWORDS_SETTING,
    KeywordCategorizer,
    load_category_keywords,
)
from expense_sync.scraper import (
    AuthorizationRequiredError,
    MailTransport,
    TransactionScraper,
)
from expense_sync.sources import get_source_configs
from expense_sync.sync import SyncResult, sync_transactions

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 7

# ntfy.sh configuration
NTFY_TOPIC = os.getenv("NTFY_TOPIC", "")
NTFY_SERVER = os.getenv("NTFY_SERVER", "https://ntfy.sh")


class DailyOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    RETRY = "retry"


def _send_notification(title: str, message: str):
    """Send a push notification via ntfy.sh."""
    if not NTFY_TOPIC:
        logger.info("NTFY_TOPIC not set -- skipping notification.")
        logger.info("Notification would be: %s -- %s", title, message)
        return

    try:
        resp = requests.post(
            f"{NTFY_SERVER}/{NTFY_TOPIC}",
            data=message.encode("utf-8"),
            headers={"Title": title},
            timeout=10,
        )
        if resp.status_code == 200:
            logger.info("Notification sent successfully.")
        else:
            logger.warning("ntfy returned %d: %s", resp.status_code, resp.text[:200])
    except requests.RequestException as e:
        logger.warning("Failed to send notification: %s", e)


def _lookback_days() -> int:
    """SYNC_LOOKBACK_DAYS, or the default when unset or not a positive number."""
    raw = os.getenv("SYNC_LOOKBACK_DAYS", "").strip()
    if not raw:
        return DEFAULT_LOOKBACK_DAYS
    try:
        days = int(raw)
    except ValueError:
        days = 0
    if days < 1:
        logger.warning(
            "Invalid SYNC_LOOKBACK_DAYS %r, using %d days.", raw, DEFAULT_LOOKBACK_DAYS
        )
        return DEFAULT_LOOKBACK_DAYS
    return days


def summarize(result: SyncResult) -> tuple[str, str]:
    """Build the notification title and body for a sync result."""
    cat_counts = Counter(t.category for t in result.inserted)
    summary_parts = [f"{cnt}x {cat}" for cat, cnt in cat_counts.most_common(5)]
    total_debit = sum(t.amount for t in result.inserted if t.type.value == "DEBIT")

    title = f"Expense Sync: {len(result.inserted)} new transaction(s)"
    body = f"{', '.join(summary_parts)}\nSpent: Rs {total_debit:,.0f}"
    unknown = cat_counts.get("Unknown", 0)
    if unknown:
        body += f"\n{unknown} need review"
    return title, body


def run_daily_sync(
    account_id: Optional[str] = None,
    transport_factory: Optional[Callable[[str], MailTransport]] = None,
    store=None,
) -> DailyOutcome:
    """Sync the selected account; see the module docstring for outcomes."""
    try:
        database.init_db()
        account_id = account_id or gmail.get_selected_account()
        if not account_id:
            logger.info("No Gmail account selected -- nothing to sync.")
            return DailyOutcome.SKIPPED

        categorizer = KeywordCategorizer(
            load_category_keywords(database.get_setting(CATEGORY_KEYWORDS_SETTING))
        )
        scraper = TransactionScraper(
            transport_factory or gmail.gmail_transport_factory,
            get_source_configs().values(),
            categorizer=categorizer,
        )
        result = sync_transactions(
            scraper,
            store or database.SqliteTransactionStore(),
            account_id,
            days=_lookback_days(),
        )
    except AuthorizationRequiredError as e:
        logger.warning("Skipping daily sync, authorization required: %s", e)
        return DailyOutcome.SKIPPED
    except Exception:
        logger.exception("Daily sync failed; will retry later.")
        return DailyOutcome.RETRY

    if result.inserted:
        title, body = summarize(result)
        logger.info("Summary: %s", title)
        logger.info("Details: %s", body.replace("\n", " | "))
        _send_notification(title, body)
    else:
        logger.info("No new transactions (%d already stored).", result.duplicates)
    return DailyOutcome.SUCCESS
