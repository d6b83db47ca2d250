"""Upstream data providers.

Every source of accounts and transactions implements DataProvider. The sync
engine only ever talks to providers through a ProviderRegistry.

Usage:
    from tally.core.providers import build_default_registry

    registry = build_default_registry()
    provider = registry.create("plaid", access_token, meta)
    page = provider.get_transactions(provider.decode_cursor(connection.cursor))
"""

from tally.core.providers.models import (
    RawAccount,
    RawTransaction,
    RawBalance,
    RawHolding,
    TransactionPage,
    ConnectionMeta,
    CursorToken,
    TimestampCursor,
    Cursor,
)
from tally.core.providers.base import DataProvider
from tally.core.providers.registry import ProviderRegistry, build_default_registry

__all__ = [
    # Models
    "RawAccount",
    "RawTransaction",
    "RawBalance",
    "RawHolding",
    "TransactionPage",
    "ConnectionMeta",
    "CursorToken",
    "TimestampCursor",
    "Cursor",
    # Providers
    "DataProvider",
    "ProviderRegistry",
    "build_default_registry",
]
