"""
Keyword-based transaction categorisation.

Each category owns a list of lowercase substrings; the first category (in
table order) with a substring present in the description wins. Tables are
plain data so tests and users can pass their own.
"""

import json
import logging
from dataclasses import replace
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

from expense_sync.models import UNKNOWN_CATEGORY, Transaction

logger = logging.getLogger(__name__)

CATEGORY_KEYWORDS_SETTING = "category_keywords"

DEFAULT_CATEGORY_KEYWORDS: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "Food": (
        "restaurant", "food", "zomato", "swiggy", "uber eats", "pizza", "burger",
        "cafe", "coffee", "starbucks", "mcdonald", "kfc", "domino", "subway",
    ),
    "Groceries": (
        "grocery", "supermarket", "bigbasket", "grofers", "dmart", "reliance",
        "more", "spencer", "hypermarket",
    ),
    "Transport": (
        "uber", "ola", "taxi", "metro", "bus", "train", "railway", "petrol",
        "fuel", "gas", "parking", "toll",
    ),
    "Shopping": (
        "amazon", "flipkart", "myntra", "shopping", "mall", "store", "retail",
    ),
    "Bills": (
        "electricity", "water", "gas", "phone", "mobile", "internet", "broadband",
        "utility", "bill payment", "recharge",
    ),
    "Entertainment": (
        "netflix", "prime", "spotify", "youtube", "movie", "cinema", "theater",
        "entertainment", "streaming",
    ),
    "Healthcare": (
        "hospital", "pharmacy", "medicine", "doctor", "clinic", "medical",
        "apollo", "pharmeasy", "1mg",
    ),
    "Education": (
        "school", "college", "university", "course", "education", "tuition",
        "book", "stationery",
    ),
    "Travel": (
        "hotel", "flight", "booking", "travel", "trip", "vacation", "make my trip",
        "goibibo", "yatra",
    ),
    "Utilities": (
        "maintenance", "repair", "service", "utility",
    ),
})


class KeywordCategorizer:
    """Map free-text descriptions to a spending category."""

    def __init__(self, keywords: Optional[Mapping[str, Sequence[str]]] = None):
        table = DEFAULT_CATEGORY_KEYWORDS if keywords is None else keywords
        # Freeze a private copy; insertion order is the match order
        self._table = tuple(
            (category, tuple(kw.lower() for kw in words))
            for category, words in table.items()
        )

    @property
    def categories(self) -> list[str]:
        return [category for category, _ in self._table]

    def categorize(self, description: str) -> str:
        """Return the first matching category, or "Unknown"."""
        lowered = description.lower()
        for category, words in self._table:
            if any(word in lowered for word in words):
                return category
        return UNKNOWN_CATEGORY

    def categorize_transaction(self, txn: Transaction) -> Transaction:
        """Fill in the category of an uncategorised transaction.

        Transactions that already carry a real category are returned as-is.
        """
        if txn.category and txn.category != UNKNOWN_CATEGORY:
            return txn
        return replace(txn, category=self.categorize(txn.description))


def load_category_keywords(raw: Optional[str]) -> Mapping[str, tuple[str, ...]]:
    """Parse a user keyword table stored as JSON; defaults when absent or invalid."""
    if not raw:
        return DEFAULT_CATEGORY_KEYWORDS
    try:
        data = json.loads(raw)
        return {str(cat): tuple(str(w) for w in words) for cat, words in data.items()}
    except (json.JSONDecodeError, TypeError, AttributeError) as e:
        logger.warning("Ignoring invalid category keyword table: %s", e)
        return DEFAULT_CATEGORY_KEYWORDS
