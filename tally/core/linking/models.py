"""Link flow data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class LinkStatus(str, Enum):
    """Outcome of a link completion."""

    COMPLETE = "complete"
    DUPLICATE = "duplicate"  # institution already linked; connection_id is the existing one
    WAITING = "waiting"  # user has not finished yet; call complete again later


@dataclass
class InstitutionMatch:
    """An institution found by a provider's search."""

    provider: str
    institution_id: str
    name: str


@dataclass
class LinkStart:
    """A started link: the URL for the user and the token to complete with."""

    provider: str
    link_url: str
    completion_token: str  # Plaid link token or Finicity customer id
    institution_name: Optional[str] = None
    plaid_match: Optional[str] = None
    finicity_match: Optional[str] = None


@dataclass
class LinkedConnection:
    """A connection created by a completed link, with its first sync counts."""

    connection_id: str
    institution_name: Optional[str]
    accounts_synced: int = 0
    transactions_added: int = 0
    holdings_synced: int = 0


@dataclass
class LinkOutcome:
    """Result of completing a link."""

    status: LinkStatus
    connection_id: Optional[str] = None
    institution_name: Optional[str] = None
    connections: List[LinkedConnection] = field(default_factory=list)
    duplicates: List[str] = field(default_factory=list)  # existing connection ids skipped alongside new links

    @classmethod
    def waiting(cls) -> "LinkOutcome":
        return cls(status=LinkStatus.WAITING)

    @classmethod
    def duplicate(cls, connection_id: str, institution_name: Optional[str] = None) -> "LinkOutcome":
        return cls(status=LinkStatus.DUPLICATE, connection_id=connection_id, institution_name=institution_name)

    @classmethod
    def complete(cls, connections: List[LinkedConnection], duplicates: Optional[List[str]] = None) -> "LinkOutcome":
        first = connections[0]
        return cls(
            status=LinkStatus.COMPLETE,
            connection_id=first.connection_id,
            institution_name=first.institution_name,
            connections=connections,
            duplicates=list(duplicates or []),
        )
