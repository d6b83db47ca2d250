"""Base data provider abstraction."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Type

from tally.core.providers.models import (
    Cursor,
    RawAccount,
    RawBalance,
    RawHolding,
    TransactionPage,
)


class DataProvider(ABC):
    """Abstract base class for upstream data sources.

    Every provider reports accounts, transactions and balances. Holdings and
    server-side disconnect are optional capabilities advertised through
    ``supports_holdings`` and ``supports_disconnect``; callers check the flag
    before invoking them.
    """

    name: str = ""
    cursor_type: Optional[Type] = None
    supports_holdings: bool = False
    supports_disconnect: bool = False

    @abstractmethod
    def get_accounts(self) -> List[RawAccount]:
        """Fetch every account, draining upstream pagination.

        Returns:
            Accounts with stable external ids and normalized types
        """
        pass

    @abstractmethod
    def get_transactions(self, cursor: Optional[Cursor] = None) -> TransactionPage:
        """Fetch transactions newer than a cursor.

        Args:
            cursor: Value from a previous page's ``next_cursor``; None on first sync

        Returns:
            TransactionPage with added, modified and removed records
        """
        pass

    @abstractmethod
    def get_balances(self) -> List[RawBalance]:
        """Fetch the current balance of every account."""
        pass

    def get_holdings(self) -> List[RawHolding]:
        """Fetch portfolio positions. Only valid when supports_holdings is set."""
        raise NotImplementedError(f"{self.name} does not report holdings")

    def disconnect(self) -> None:
        """Revoke access upstream. Only valid when supports_disconnect is set."""
        raise NotImplementedError(f"{self.name} does not support disconnect")

    def decode_cursor(self, raw: Optional[str]) -> Optional[Cursor]:
        """Turn a stored cursor string back into this provider's cursor type."""
        if not raw or self.cursor_type is None:
            return None
        return self.cursor_type.decode(raw)
