"""Database module."""

from .database import get_db, init_db, insert_ignore, create_db_engine, engine, SessionLocal
from .models import (
    Base,
    Account,
    Transaction,
    PortfolioHolding,
    ProviderConnection,
    Budget,
    NetWorthSnapshot,
)

__all__ = [
    "get_db",
    "init_db",
    "insert_ignore",
    "create_db_engine",
    "engine",
    "SessionLocal",
    "Base",
    "Account",
    "Transaction",
    "PortfolioHolding",
    "ProviderConnection",
    "Budget",
    "NetWorthSnapshot",
]
