"""
Field extraction for Indian bank alert emails.

Every extractor works on free text (usually ``subject + " " + body``) and
returns ``None`` or a default when nothing matches; none of them raise on
bad input. Description heuristics are kept per source in
``DESCRIPTION_RULES`` so a new bank is a table entry, not new code.
"""

import logging
import re
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Iterable, Optional, Sequence

from expense_sync.categorizer import KeywordCategorizer
from expense_sync.models import (
    RawMessage,
    Transaction,
    TransactionSource,
    TransactionType,
)

logger = logging.getLogger(__name__)

DESCRIPTION_MAX_LEN = 50
FALLBACK_DESCRIPTION = "Transaction"

# ---------------------------------------------------------------------------
# Amount
# ---------------------------------------------------------------------------

# Tried in order; the first pattern with any match decides the amount.
_AMOUNT_PATTERNS = [
    # "INR 1,234.56", "Rs.500", "₹ 99"
    re.compile(r"(?:INR|Rs\.?|₹)\s*([\d,]+\.?\d*)", re.IGNORECASE),
    # "1,234.56 INR"
    re.compile(r"([\d,]+\.?\d*)\s*(?:INR|Rs\.?|₹)", re.IGNORECASE),
    re.compile(r"debited.*?([\d,]+\.?\d*)", re.IGNORECASE),
    re.compile(r"credited.*?([\d,]+\.?\d*)", re.IGNORECASE),
]


def extract_amount(text: str) -> Optional[float]:
    """Return the transaction amount, or None when none can be read."""
    for pattern in _AMOUNT_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        cleaned = match.group(1).replace(",", "")
        try:
            amount = float(cleaned)
        except ValueError:
            return None
        return amount if amount > 0 else None
    return None


# ---------------------------------------------------------------------------
# Date
# ---------------------------------------------------------------------------

# Date-only formats tried on the Date header after RFC 822 parsing fails
_HEADER_DATE_FORMATS = ["%d %b %Y", "%d-%m-%Y", "%d/%m/%Y"]

_BODY_DATE_PATTERNS = [
    re.compile(r"(\d{1,2}[-/]\d{1,2}[-/]\d{2,4})"),
    re.compile(r"(\d{1,2}\s+[A-Za-z]+\s+\d{4})"),
]

_BODY_DATE_FORMATS = [
    "%d-%m-%Y", "%d/%m/%Y", "%d-%m-%y", "%d/%m/%y",
    "%d %b %Y", "%d %B %Y",
]


def _parse_with_formats(value: str, formats: Sequence[str]) -> Optional[datetime]:
    for fmt in formats:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def _parse_header_date(value: str) -> Optional[datetime]:
    value = value.strip()
    try:
        # "Mon, 05 Oct 2026 14:07:00 +0530 (IST)"
        return parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        pass
    return _parse_with_formats(value, _HEADER_DATE_FORMATS)


def extract_date(
    headers: Iterable[tuple[str, str]],
    body: str,
    now: Optional[datetime] = None,
) -> datetime:
    """Return the transaction time; falls back to ``now``, never None."""
    for name, value in headers:
        if name.lower() == "date" and value:
            parsed = _parse_header_date(value)
            if parsed:
                return parsed
            break

    for pattern in _BODY_DATE_PATTERNS:
        for match in pattern.finditer(body):
            parsed = _parse_with_formats(match.group(1), _BODY_DATE_FORMATS)
            if parsed:
                return parsed

    logger.debug("No parsable date found, using processing time")
    return now or datetime.now()


# ---------------------------------------------------------------------------
# Transaction type
# ---------------------------------------------------------------------------

def extract_type(text: str) -> TransactionType:
    """CREDIT if the text mentions credit, otherwise DEBIT.

    Emails without any signal are treated as expenses.
    """
    lowered = text.lower()
    if "credit" in lowered:  # also covers "credited"
        return TransactionType.CREDIT
    return TransactionType.DEBIT


# ---------------------------------------------------------------------------
# Description
# ---------------------------------------------------------------------------

_UPI_RULES = [
    re.compile(r"(?:paid to|to|at)\s+([A-Z][A-Za-z0-9\s&]+?)(?:\s+UPI|\s+on|\s+for|\.|$)", re.IGNORECASE),
    re.compile(r"UPI\s+(?:payment|transaction)\s+(?:to|at)\s+([A-Z][A-Za-z0-9\s&]+?)(?:\s+on|\s+for|\.|$)", re.IGNORECASE),
    re.compile(r"merchant[:\s]+([A-Z][A-Za-z0-9\s&]+?)(?:\s+on|\s+for|\.|$)", re.IGNORECASE),
    re.compile(r"([A-Z][A-Za-z0-9\s&]{3,30}?)\s+UPI", re.IGNORECASE),
]

_CARD_RULES = [
    re.compile(r"(?:purchase|transaction|payment)\s+(?:at|from)\s+([A-Z][A-Za-z0-9\s&]+?)(?:\s+on|\s+for|\.|$)", re.IGNORECASE),
    re.compile(r"merchant[:\s]+([A-Z][A-Za-z0-9\s&]+?)(?:\s+on|\s+for|\.|$)", re.IGNORECASE),
    re.compile(r"([A-Z][A-Za-z0-9\s&]{3,30}?)\s+(?:card|transaction)", re.IGNORECASE),
]

_GENERIC_RULES = [
    re.compile(r"(?:to|at|from)\s+([A-Z][A-Za-z0-9\s&]+?)(?:\s+on|\s+for|\.|$)", re.IGNORECASE),
    re.compile(r"merchant[:\s]+([A-Z][A-Za-z0-9\s&]+?)(?:\s+on|\s+for|\.|$)", re.IGNORECASE),
]

DESCRIPTION_RULES: dict[TransactionSource, list[re.Pattern]] = {
    TransactionSource.HDFC_UPI: _UPI_RULES,
    TransactionSource.SBI_UPI: _UPI_RULES,
    TransactionSource.HDFC_CREDIT_CARD: _CARD_RULES,
    TransactionSource.ICICI_CREDIT_CARD: _CARD_RULES,
}

_TRAILING_QUALIFIER = re.compile(r"\s+(?:UPI|card|transaction|payment|on|for).*$", re.IGNORECASE)
_LEADING_PREPOSITION = re.compile(r"^(?:at|to|from)\s+", re.IGNORECASE)
_NUMERIC = re.compile(r"\d+")

_SUBJECT_STOPWORDS = {"upi", "transaction", "payment", "card", "credit", "debit", "inr", "rs"}
_BODY_STOPWORDS = {"to", "at", "from", "on", "for", "the", "and", "or", "is", "was", "are", "were"}


def _from_phrases(body: str, phrases: Sequence[str]) -> Optional[str]:
    lowered = body.lower()
    for phrase in phrases:
        needle = phrase.strip().lower()
        if not needle:
            continue
        index = lowered.find(needle)
        if index < 0:
            continue
        after = body[index + len(needle):].strip()
        extracted = after.split(".", 1)[0].strip()
        if 3 <= len(extracted) <= 100:
            logger.debug("Description from phrase %r: %r", phrase, extracted)
            return extracted[:DESCRIPTION_MAX_LEN]
    return None


def _from_rules(text: str, source: TransactionSource) -> Optional[str]:
    for pattern in DESCRIPTION_RULES.get(source, _GENERIC_RULES):
        match = pattern.search(text)
        if not match:
            continue
        cleaned = _TRAILING_QUALIFIER.sub("", match.group(1).strip())
        cleaned = _LEADING_PREPOSITION.sub("", cleaned).strip()
        if 3 <= len(cleaned) <= DESCRIPTION_MAX_LEN:
            return cleaned
    return None


def _first_words(text: str, min_len: int, stopwords: set[str]) -> Optional[str]:
    words = [
        word for word in text.split()
        if len(word) >= min_len
        and not _NUMERIC.fullmatch(word)
        and word.lower() not in stopwords
    ]
    if not words:
        return None
    return " ".join(words[:5])[:DESCRIPTION_MAX_LEN]


def extract_description(
    subject: str,
    body: str,
    source: TransactionSource,
    phrases: Sequence[str] = (),
) -> str:
    """Best-effort merchant/payee description, at most 50 characters.

    Layers, first hit wins: configured phrases in the body, per-source
    regex rules, meaningful subject words, meaningful body words, and
    finally the literal "Transaction".
    """
    return (
        _from_phrases(body, phrases)
        or _from_rules(f"{subject} {body}", source)
        or _first_words(subject, 3, _SUBJECT_STOPWORDS)
        or _first_words(body, 4, _BODY_STOPWORDS)
        or FALLBACK_DESCRIPTION
    )


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def parse_transaction(
    raw: RawMessage,
    source: TransactionSource,
    phrases: Sequence[str] = (),
    categorizer: Optional[KeywordCategorizer] = None,
    now: Optional[datetime] = None,
) -> Optional[Transaction]:
    """Build a categorized transaction from one decoded email.

    Returns None when no amount can be found.
    """
    full_text = f"{raw.subject} {raw.body}"

    amount = extract_amount(full_text)
    if amount is None:
        return None

    date = extract_date(raw.headers, raw.body, now=now)
    description = extract_description(raw.subject, raw.body, source, phrases)
    txn_type = extract_type(full_text)

    categorizer = categorizer or KeywordCategorizer()
    return Transaction(
        date=date,
        amount=amount,
        type=txn_type,
        source=source,
        description=description,
        category=categorizer.categorize(description),
        is_manual=False,
    )
