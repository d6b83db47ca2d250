"""Normalized records exchanged between providers and the sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import List, Optional, Union


@dataclass
class RawAccount:
    """An account as reported by a provider."""

    external_id: str
    name: str
    type: str  # checking, savings, credit, investment, crypto, loan, other
    institution: Optional[str] = None
    currency: str = "USD"
    balance: Optional[float] = None


@dataclass
class RawTransaction:
    """A transaction as reported by a provider, already sign-normalized.

    Positive amounts are money in, negative amounts are money out.
    """

    external_id: str
    account_external_id: str
    date: date
    amount: float
    currency: str = "USD"
    description: Optional[str] = None
    merchant: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    type: Optional[str] = None
    pending: bool = False
    notes: Optional[str] = None


@dataclass
class RawBalance:
    """Current balance for one provider account."""

    account_external_id: str
    balance: float
    currency: str = "USD"


@dataclass
class RawHolding:
    """A portfolio position as reported by a provider."""

    account_external_id: str
    symbol: str
    quantity: float
    name: Optional[str] = None
    price: Optional[float] = None
    price_as_of: Optional[datetime] = None
    value: Optional[float] = None
    currency: str = "USD"
    asset_type: str = "other"  # stock, etf, crypto, bond, other


@dataclass(frozen=True)
class CursorToken:
    """Opaque continuation token issued by the upstream API."""

    token: str

    def encode(self) -> str:
        return self.token

    @classmethod
    def decode(cls, raw: str) -> "CursorToken":
        return cls(token=raw)


@dataclass(frozen=True)
class TimestampCursor:
    """Latest transaction time seen, used as the start of the next date range."""

    at: datetime

    def encode(self) -> str:
        return self.at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    @classmethod
    def decode(cls, raw: str) -> "TimestampCursor":
        parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return cls(at=parsed)


Cursor = Union[CursorToken, TimestampCursor]


@dataclass
class TransactionPage:
    """Everything a provider returned for one transaction fetch."""

    added: List[RawTransaction] = field(default_factory=list)
    modified: List[RawTransaction] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)  # external ids
    next_cursor: Optional[Cursor] = None


@dataclass
class ConnectionMeta:
    """Identifiers from the stored connection handed to provider factories."""

    item_id: Optional[str] = None
    institution_id: Optional[str] = None
    institution_name: Optional[str] = None
