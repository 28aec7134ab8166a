from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

UNKNOWN_CATEGORY = "Unknown"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class TransactionType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class TransactionSource(str, Enum):
    HDFC_UPI = "HDFC_UPI"
    HDFC_CREDIT_CARD = "HDFC_CREDIT_CARD"
    ICICI_CREDIT_CARD = "ICICI_CREDIT_CARD"
    SBI_UPI = "SBI_UPI"
    MANUAL = "MANUAL"  # hand-entered, never scraped


@dataclass(frozen=True)
class SourceConfig:
    """Where one source's alert emails come from and how to read them."""

    source: TransactionSource
    email_addresses: tuple[str, ...]
    subject_keywords: tuple[str, ...] = ()
    description_phrases: tuple[str, ...] = ()

    def __post_init__(self):
        # Normalise lists coming from JSON into tuples
        for name in ("email_addresses", "subject_keywords", "description_phrases"):
            if isinstance(getattr(self, name), str):
                raise ValueError(f"{self.source.value}: {name} must be a list, not a string")
        object.__setattr__(self, "email_addresses", tuple(self.email_addresses))
        object.__setattr__(self, "subject_keywords", tuple(self.subject_keywords))
        object.__setattr__(self, "description_phrases", tuple(self.description_phrases or ()))
        if not any(addr.strip() for addr in self.email_addresses):
            raise ValueError(f"{self.source.value}: at least one sender address is required")

    def to_dict(self) -> dict:
        return {
            "source": self.source.value,
            "email_addresses": list(self.email_addresses),
            "subject_keywords": list(self.subject_keywords),
            "description_phrases": list(self.description_phrases),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SourceConfig":
        return cls(
            source=TransactionSource(data["source"]),
            email_addresses=data.get("email_addresses") or (),
            subject_keywords=data.get("subject_keywords") or (),
            description_phrases=data.get("description_phrases") or (),
        )


@dataclass
class RawMessage:
    subject: str
    body: str
    headers: list[tuple[str, str]] = field(default_factory=list)

    def header(self, name: str) -> Optional[str]:
        """Return the first header value with this name (case-insensitive)."""
        wanted = name.lower()
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return None


@dataclass
class Transaction:
    date: datetime
    amount: float  # always positive, direction lives in `type`
    type: TransactionType
    source: TransactionSource
    description: str = ""
    category: str = UNKNOWN_CATEGORY
    is_manual: bool = False
    id: Optional[int] = None


def to_epoch_millis(value: datetime) -> int:
    """Whole milliseconds since the epoch; naive datetimes are local time."""
    if value.tzinfo is None:
        value = value.astimezone()
    return (value - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_millis(millis: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=millis)
