#!/usr/bin/env python3
"""
Headless daily Gmail sync.

Designed to be called by cron:
    0 20 * * * cd ~/expense-mail-sync && ./venv/bin/python fetch_daily.py

Exit status 75 (EX_TEMPFAIL) asks the scheduler to try again later; every
other outcome exits 0.
"""

import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from expense_sync.daily import DailyOutcome, run_daily_sync

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

EX_TEMPFAIL = 75


def main() -> int:
    outcome = run_daily_sync()
    logger.info("Done: %s", outcome.value)
    return EX_TEMPFAIL if outcome is DailyOutcome.RETRY else 0


if __name__ == "__main__":
    sys.exit(main())
