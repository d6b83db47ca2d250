"""Ledger operations over accounts, transactions, holdings, budgets and net worth.

Usage:
    from tally.core.ledger import AccountRepository, TransactionRepository

    with get_db() as db:
        account = AccountRepository(db).add_account("Checking", "checking", balance=1200)
        TransactionRepository(db).add_transaction(account.id, "2026-02-03", -45.0, category="Food")
"""

from tally.core.ledger.accounts import AccountRepository
from tally.core.ledger.budgets import BudgetRepository, BudgetStatus, current_period_range
from tally.core.ledger.connections import ConnectionInfo, ConnectionService, RemovalResult
from tally.core.ledger.holdings import ASSET_TYPES, HoldingRepository, Portfolio, RefreshResult
from tally.core.ledger.importers import ImportResult, export_csv, import_csv
from tally.core.ledger.net_worth import NetWorthService
from tally.core.ledger.transactions import CategorySpending, StatementImportResult, TransactionRepository, parse_iso_date

__all__ = [
    "AccountRepository",
    "ASSET_TYPES",
    "BudgetRepository",
    "BudgetStatus",
    "CategorySpending",
    "ConnectionInfo",
    "ConnectionService",
    "HoldingRepository",
    "ImportResult",
    "NetWorthService",
    "Portfolio",
    "RefreshResult",
    "RemovalResult",
    "StatementImportResult",
    "TransactionRepository",
    "current_period_range",
    "export_csv",
    "import_csv",
    "parse_iso_date",
]
