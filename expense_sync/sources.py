"""
Email source configuration and Gmail search query building.

A source is one bank + instrument pair (e.g. HDFC UPI alerts). Users may
override a source's built-in configuration; overrides are kept as JSON in
the settings table and take precedence over the defaults, source by source.
"""

import json
import logging
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from expense_sync import database
from expense_sync.models import SourceConfig, TransactionSource

logger = logging.getLogger(__name__)

EMAIL_SOURCES_SETTING = "email_sources"

DEFAULT_SOURCE_CONFIGS: Mapping[TransactionSource, SourceConfig] = MappingProxyType({
    TransactionSource.HDFC_UPI: SourceConfig(
        source=TransactionSource.HDFC_UPI,
        email_addresses=("noreply@hdfcbank.net", "alerts@hdfcbank.net"),
        subject_keywords=("UPI",),
    ),
    TransactionSource.HDFC_CREDIT_CARD: SourceConfig(
        source=TransactionSource.HDFC_CREDIT_CARD,
        email_addresses=("noreply@hdfcbank.net", "alerts@hdfcbank.net"),
        subject_keywords=("credit",),
    ),
    TransactionSource.ICICI_CREDIT_CARD: SourceConfig(
        source=TransactionSource.ICICI_CREDIT_CARD,
        email_addresses=("credit_cards@icicibank.com",),
        subject_keywords=("transaction",),
    ),
    TransactionSource.SBI_UPI: SourceConfig(
        source=TransactionSource.SBI_UPI,
        email_addresses=("cbsalerts.sbi@alerts.sbi.co.in", "donotreply.sbiatm@alerts.sbi.co.in"),
        subject_keywords=("UPI",),
    ),
})


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def get_saved_overrides() -> dict[TransactionSource, SourceConfig]:
    """Return only the user-saved configurations (empty if none or unreadable)."""
    raw = database.get_setting(EMAIL_SOURCES_SETTING)
    if not raw:
        return {}
    try:
        data = json.loads(raw)
        return {
            TransactionSource(key): SourceConfig.from_dict(value)
            for key, value in data.items()
        }
    except (json.JSONDecodeError, TypeError, AttributeError, KeyError, ValueError) as e:
        logger.warning("Saved email source config is unreadable, using defaults: %s", e)
        return {}


def get_source_configs() -> dict[TransactionSource, SourceConfig]:
    """Return the effective configuration: defaults overlaid with overrides."""
    configs = dict(DEFAULT_SOURCE_CONFIGS)
    configs.update(get_saved_overrides())
    return configs


def _store(configs: Mapping[TransactionSource, SourceConfig]) -> None:
    payload = {source.value: config.to_dict() for source, config in configs.items()}
    database.set_setting(EMAIL_SOURCES_SETTING, json.dumps(payload))


def save_source_config(config: SourceConfig) -> None:
    """Add or replace the override for one source."""
    overrides = get_saved_overrides()
    overrides[config.source] = config
    _store(overrides)


def remove_source_config(source: TransactionSource) -> None:
    """Drop a source's override so its default applies again."""
    overrides = get_saved_overrides()
    overrides.pop(source, None)
    if overrides:
        _store(overrides)
    else:
        database.delete_setting(EMAIL_SOURCES_SETTING)


# ---------------------------------------------------------------------------
# Query building
# ---------------------------------------------------------------------------

def _or_clause(operator: str, values: Iterable[str]) -> str:
    terms = [f"{operator}:{v.strip()}" for v in values if v.strip()]
    if not terms:
        return ""
    if len(terms) == 1:
        return terms[0]
    return "(" + " OR ".join(terms) + ")"


def date_floor(
    days: int = 7,
    from_timestamp: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> str:
    """Gmail ``after:`` clause; an explicit timestamp wins over a day count."""
    if from_timestamp is not None:
        start = from_timestamp
    else:
        start = (now or datetime.now()) - timedelta(days=days)
    return f"after:{start.year}/{start.month}/{start.day}"


def build_query(
    config: SourceConfig,
    days: int = 7,
    from_timestamp: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> str:
    """Build the Gmail search query for one source, e.g.
    ``(from:a@x OR from:b@x) subject:UPI after:2026/3/3``.
    """
    clauses = [
        _or_clause("from", config.email_addresses),
        _or_clause("subject", config.subject_keywords),
        date_floor(days, from_timestamp, now),
    ]
    return " ".join(c for c in clauses if c)


def build_source_queries(
    configs: Iterable[SourceConfig],
    days: int = 7,
    from_timestamp: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> list[tuple[str, TransactionSource]]:
    """Pair each source's query with the source it was built for."""
    return [
        (build_query(config, days, from_timestamp, now), config.source)
        for config in configs
    ]
