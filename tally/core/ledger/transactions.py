"""Transaction repository and spending summaries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from tally.core.errors import NotFoundError
from tally.core.providers.csv_provider import format_amount
from tally.db.database import insert_ignore
from tally.db.models import Account, Transaction

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("date", "amount", "description", "merchant", "category", "subcategory", "type", "notes")


def parse_iso_date(value, field_name: str = "date") -> date:
    """Accept a date or ``YYYY-MM-DD`` text.

    Raises:
        ValueError: If the text is not an ISO date
    """
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValueError(f'Invalid {field_name} "{value}". Use YYYY-MM-DD.') from None


@dataclass
class CategorySpending:
    """Outflow total for one category."""

    category: str
    total: float
    count: int


@dataclass
class StatementImportResult:
    imported: int
    skipped: int
    errors: List[str] = field(default_factory=list)


class TransactionRepository:
    """Repository for Transaction CRUD operations."""

    def __init__(self, db: Session):
        """Initialize repository with database session."""
        self.db = db

    def _require_account(self, account_id: str) -> Account:
        account = self.db.get(Account, account_id)
        if account is None:
            raise NotFoundError(f'Account "{account_id}" not found')
        return account

    def add_transaction(
        self,
        account_id: str,
        date,
        amount: float,
        description: Optional[str] = None,
        merchant: Optional[str] = None,
        category: Optional[str] = None,
        subcategory: Optional[str] = None,
        type: Optional[str] = None,
        notes: Optional[str] = None,
        currency: str = "USD",
    ) -> Transaction:
        """Record a manual transaction.

        Args:
            account_id: Owning account
            date: Date or ``YYYY-MM-DD`` text
            amount: Signed amount, negative for money out

        Raises:
            ValueError: If the date is malformed
            NotFoundError: If the account does not exist
        """
        tx_date = parse_iso_date(date)
        self._require_account(account_id)

        transaction = Transaction(
            account_id=account_id,
            date=tx_date,
            amount=amount,
            currency=currency,
            description=description,
            merchant=merchant,
            category=category,
            subcategory=subcategory,
            type=type,
            notes=notes,
            source="manual",
        )
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def get_transaction(self, transaction_id: str) -> Transaction:
        transaction = self.db.get(Transaction, transaction_id)
        if transaction is None:
            raise NotFoundError(f'Transaction "{transaction_id}" not found')
        return transaction

    def query_transactions(
        self,
        account_id: Optional[str] = None,
        category: Optional[str] = None,
        from_date=None,
        to_date=None,
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Transaction]:
        """Filter transactions, newest first.

        Args:
            account_id: Only this account
            category: Exact category match
            from_date: Inclusive lower bound
            to_date: Inclusive upper bound
            search: Substring matched against description, merchant and notes
            limit: Maximum rows
            offset: Rows to skip

        Returns:
            Matching transactions
        """
        query = self.db.query(Transaction)
        if account_id:
            query = query.filter(Transaction.account_id == account_id)
        if category:
            query = query.filter(Transaction.category == category)
        if from_date:
            query = query.filter(Transaction.date >= parse_iso_date(from_date, "from date"))
        if to_date:
            query = query.filter(Transaction.date <= parse_iso_date(to_date, "to date"))
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(
                    Transaction.description.like(pattern),
                    Transaction.merchant.like(pattern),
                    Transaction.notes.like(pattern),
                )
            )
        return (
            query.order_by(Transaction.date.desc(), Transaction.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def update_transaction(self, transaction_id: str, **fields: Any) -> Transaction:
        """Update the given fields of a transaction.

        Raises:
            ValueError: If no updatable field is given
            NotFoundError: If the transaction does not exist
        """
        updates = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS and v is not None}
        if not updates:
            raise ValueError("No fields to update")
        if "date" in updates:
            updates["date"] = parse_iso_date(updates["date"])

        transaction = self.get_transaction(transaction_id)
        for key, value in updates.items():
            setattr(transaction, key, value)
        self.db.flush()
        return transaction

    def delete_transaction(self, transaction_id: str) -> None:
        transaction = self.get_transaction(transaction_id)
        self.db.delete(transaction)
        self.db.flush()

    def spending_summary(self, from_date, to_date, account_id: Optional[str] = None) -> List[CategorySpending]:
        """Outflows grouped by category, largest first.

        Inflows are excluded. Uncategorized outflows are grouped as
        ``Uncategorized``.
        """
        category = func.coalesce(Transaction.category, "Uncategorized")
        query = self.db.query(
            category.label("category"),
            func.sum(Transaction.amount).label("total"),
            func.count(Transaction.id).label("count"),
        ).filter(
            Transaction.amount < 0,
            Transaction.date >= parse_iso_date(from_date, "from date"),
            Transaction.date <= parse_iso_date(to_date, "to date"),
        )
        if account_id:
            query = query.filter(Transaction.account_id == account_id)

        rows = query.group_by(category).all()
        summary = [CategorySpending(category=r.category, total=round(abs(r.total), 2), count=r.count) for r in rows]
        summary.sort(key=lambda s: s.total, reverse=True)
        return summary

    def import_transactions(self, account_id: str, rows: List[Dict[str, Any]], source: str = "statement") -> StatementImportResult:
        """Insert a batch of parsed statement rows, skipping ones already stored.

        Each row needs ``date`` and ``amount`` and may carry ``external_id``,
        ``description``, ``merchant``, ``category``, ``subcategory``, ``type``
        and ``notes``. Rows without an id get one derived from account, date,
        amount and position, so re-importing the same statement is a no-op.
        Rows with a missing or unreadable date or amount are reported in
        ``errors`` and the rest of the batch is still imported.

        Raises:
            NotFoundError: If the account does not exist
        """
        account = self._require_account(account_id)
        imported = skipped = 0
        errors: List[str] = []

        for i, row in enumerate(rows):
            try:
                tx_date = parse_iso_date(row["date"])
                amount = float(row["amount"])
            except (ValueError, KeyError, TypeError) as e:
                errors.append(f"Row {i + 1}: {e}")
                continue

            external_id = row.get("external_id") or (
                f"stmt-{account_id}-{tx_date.isoformat()}-{format_amount(amount)}-{i}"
            )
            written = insert_ignore(
                self.db,
                Transaction,
                {
                    "account_id": account_id,
                    "date": tx_date,
                    "amount": amount,
                    "currency": row.get("currency") or account.currency,
                    "description": row.get("description"),
                    "merchant": row.get("merchant"),
                    "category": row.get("category"),
                    "subcategory": row.get("subcategory"),
                    "type": row.get("type"),
                    "notes": row.get("notes"),
                    "source": source,
                    "external_id": external_id,
                },
                ["source", "external_id"],
            )
            if written:
                imported += 1
            else:
                skipped += 1

        logger.info(
            f"Imported {imported} transactions into {account_id} "
            f"({skipped} already present, {len(errors)} unreadable)"
        )
        return StatementImportResult(imported=imported, skipped=skipped, errors=errors)
