"""CSV import and export of transactions."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from tally.core.errors import NotFoundError
from tally.core.ledger.transactions import parse_iso_date
from tally.core.providers.csv_provider import CsvDataProvider, format_amount
from tally.db.database import insert_ignore
from tally.db.models import Account, Transaction

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "date",
    "amount",
    "currency",
    "description",
    "merchant",
    "category",
    "subcategory",
    "type",
    "account_name",
    "notes",
    "external_id",
]


@dataclass
class ImportResult:
    """Outcome of a CSV import."""

    imported: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


def import_csv(
    db: Session,
    file_path: str,
    account_id: str,
    mapping: Optional[Dict[str, str]] = None,
    date_format: Optional[str] = None,
    invert_amounts: bool = False,
) -> ImportResult:
    """Import a CSV export into an account.

    Rows already imported (same id, or same date, amount and position) are
    counted as skipped. Unreadable rows are reported in ``errors``.

    Args:
        db: Database session
        file_path: CSV file with a header row
        account_id: Target account
        mapping: Field name -> header name overrides
        date_format: Date order hint for ambiguous dates
        invert_amounts: Flip signs for exports that report spending as positive

    Returns:
        ImportResult with counts and row errors

    Raises:
        NotFoundError: If the account does not exist
        CsvFormatError: If the date or amount column cannot be found
    """
    account = db.get(Account, account_id)
    if account is None:
        raise NotFoundError(f'Account "{account_id}" not found')

    provider = CsvDataProvider(
        file_path,
        account_external_id=account_id,
        mapping=mapping,
        date_format=date_format,
        invert_amounts=invert_amounts,
    )
    page = provider.get_transactions()
    result = ImportResult(errors=list(provider.errors))

    for tx in page.added:
        written = insert_ignore(
            db,
            Transaction,
            {
                "account_id": account_id,
                "date": tx.date,
                "amount": tx.amount,
                "currency": tx.currency or account.currency,
                "description": tx.description,
                "merchant": tx.merchant,
                "category": tx.category,
                "subcategory": tx.subcategory,
                "type": tx.type,
                "notes": tx.notes,
                "source": "csv",
                "external_id": tx.external_id,
            },
            ["source", "external_id"],
        )
        if written:
            result.imported += 1
        else:
            result.skipped += 1

    logger.info(
        f"CSV import into {account.name}: {result.imported} imported, "
        f"{result.skipped} skipped, {len(result.errors)} errors"
    )
    return result


def export_csv(
    db: Session,
    file_path: str,
    account_id: Optional[str] = None,
    from_date=None,
    to_date=None,
) -> int:
    """Write transactions to a CSV file, oldest first.

    Returns:
        Number of rows written
    """
    query = db.query(Transaction, Account.name).join(Account, Transaction.account_id == Account.id)
    if account_id:
        query = query.filter(Transaction.account_id == account_id)
    if from_date:
        query = query.filter(Transaction.date >= parse_iso_date(from_date, "from date"))
    if to_date:
        query = query.filter(Transaction.date <= parse_iso_date(to_date, "to date"))

    rows = query.order_by(Transaction.date, Transaction.created_at).all()

    with open(file_path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=EXPORT_COLUMNS)
        writer.writeheader()
        for tx, account_name in rows:
            writer.writerow(
                {
                    "date": tx.date.isoformat(),
                    "amount": format_amount(tx.amount),
                    "currency": tx.currency,
                    "description": tx.description or "",
                    "merchant": tx.merchant or "",
                    "category": tx.category or "",
                    "subcategory": tx.subcategory or "",
                    "type": tx.type or "",
                    "account_name": account_name,
                    "notes": tx.notes or "",
                    "external_id": tx.external_id or "",
                }
            )

    logger.info(f"Exported {len(rows)} transactions to {file_path}")
    return len(rows)
