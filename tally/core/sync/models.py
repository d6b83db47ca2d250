"""Sync result models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class SyncResult:
    """Counts from one connection sync."""

    connection_id: str
    provider: str = ""
    accounts_synced: int = 0
    transactions_added: int = 0
    transactions_modified: int = 0
    transactions_removed: int = 0
    transactions_skipped: int = 0  # duplicates plus rows for unknown accounts
    holdings_synced: int = 0
    last_synced_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None
