"""CSV file data provider.

Reads bank or app exports with a header row. Columns are detected from common
header names unless a mapping is given. CSV files carry no account metadata,
balances or cursor: the caller names the target account.
"""

from __future__ import annotations

import csv
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional

from tally.core.providers.base import DataProvider
from tally.core.providers.models import RawAccount, RawBalance, RawTransaction, TransactionPage

logger = logging.getLogger(__name__)

COLUMN_CANDIDATES: Dict[str, List[str]] = {
    "date": ["date", "Date", "DATE", "Transaction Date", "Posted Date"],
    "amount": ["amount", "Amount", "AMOUNT", "Debit", "Credit"],
    "description": ["description", "Description", "memo", "Memo", "MEMO", "Details"],
    "merchant": ["merchant", "Merchant", "Payee", "payee"],
    "category": ["category", "Category", "CATEGORY"],
    "subcategory": ["subcategory", "Subcategory"],
    "type": ["type", "Type", "Transaction Type"],
    "notes": ["notes", "Notes", "note", "Note"],
    "external_id": ["external_id", "id", "ID", "transaction_id", "Transaction ID", "Reference"],
}

DATE_FORMATS = ("YYYY-MM-DD", "MM/DD/YYYY", "DD/MM/YYYY")
_FALLBACK_DATE_PATTERNS = ("%Y/%m/%d", "%d %b %Y", "%b %d, %Y", "%d-%b-%Y", "%m-%d-%Y")
_SLASH_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_AMOUNT_NOISE = re.compile(r"[,$\s]")


class CsvFormatError(ValueError):
    """The file is missing the required date or amount column."""


def parse_date(raw: str, date_format: Optional[str] = None) -> date:
    """Parse a CSV date cell.

    Args:
        raw: Cell text
        date_format: Hint; ``DD/MM/YYYY`` flips the slash-separated order

    Raises:
        ValueError: If the text is not a recognizable date
    """
    raw = raw.strip()
    try:
        return date.fromisoformat(raw)
    except ValueError:
        pass

    match = _SLASH_DATE.match(raw)
    if match:
        first, second, year = (int(part) for part in match.groups())
        if date_format == "DD/MM/YYYY":
            return date(year, second, first)
        return date(year, first, second)

    for pattern in _FALLBACK_DATE_PATTERNS:
        try:
            return datetime.strptime(raw, pattern).date()
        except ValueError:
            continue
    raise ValueError(f'Cannot parse date: "{raw}"')


def parse_amount(raw: str) -> float:
    """Parse an amount cell like ``$1,234.56``.

    Raises:
        ValueError: If nothing numeric remains
    """
    cleaned = _AMOUNT_NOISE.sub("", raw or "")
    value = float(cleaned)
    if value != value:  # NaN
        raise ValueError(f'Cannot parse amount: "{raw}"')
    return value


def format_amount(amount: float) -> str:
    """Shortest decimal text for an amount, used in synthesized ids."""
    text = f"{amount:f}".rstrip("0").rstrip(".")
    return text or "0"


@dataclass
class CsvColumns:
    """Resolved header names for one file."""

    date: str
    amount: str
    description: Optional[str] = None
    merchant: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    type: Optional[str] = None
    notes: Optional[str] = None
    external_id: Optional[str] = None


def resolve_columns(headers: List[str], mapping: Optional[Dict[str, str]] = None) -> CsvColumns:
    """Pick a header for each field from the mapping or the candidate lists."""
    mapping = mapping or {}
    resolved: Dict[str, Optional[str]] = {}
    for field_name, candidates in COLUMN_CANDIDATES.items():
        if mapping.get(field_name):
            resolved[field_name] = mapping[field_name]
            continue
        resolved[field_name] = next((c for c in candidates if c in headers), None)

    if not resolved["date"] or not resolved["amount"]:
        raise CsvFormatError(
            f'Could not find required "date" or "amount" columns. '
            f"Available columns: {', '.join(headers)}. "
            f"Use a column mapping to name them explicitly."
        )
    return CsvColumns(**resolved)


class CsvDataProvider(DataProvider):
    """Transactions from one CSV file into one account."""

    name = "csv"
    cursor_type = None

    def __init__(
        self,
        file_path: str,
        account_external_id: str,
        mapping: Optional[Dict[str, str]] = None,
        date_format: Optional[str] = None,
        invert_amounts: bool = False,
    ):
        """Initialize provider.

        Args:
            file_path: CSV file with a header row
            account_external_id: Account every row belongs to
            mapping: Field name -> header name overrides
            date_format: One of DATE_FORMATS
            invert_amounts: Set when the export reports outflows as positive
        """
        if date_format and date_format not in DATE_FORMATS:
            raise ValueError(f"Unsupported date format {date_format}. Use one of: {', '.join(DATE_FORMATS)}")
        self.file_path = file_path
        self.account_external_id = account_external_id
        self.mapping = mapping
        self.date_format = date_format
        self.invert_amounts = invert_amounts
        self.errors: List[str] = []

    def get_accounts(self) -> List[RawAccount]:
        return []

    def get_balances(self) -> List[RawBalance]:
        return []

    def get_transactions(self, cursor=None) -> TransactionPage:
        """Parse every row. Rows with a bad date or amount are recorded in ``errors``."""
        self.errors = []
        page = TransactionPage()

        with open(self.file_path, newline="", encoding="utf-8-sig") as fh:
            reader = csv.DictReader(fh)
            columns = resolve_columns(reader.fieldnames or [], self.mapping)

            for index, row in enumerate(reader):
                line = index + 2  # header is line 1
                if not any((value or "").strip() for value in row.values()):
                    continue

                try:
                    tx_date = parse_date(row.get(columns.date) or "", self.date_format)
                    amount = parse_amount(row.get(columns.amount) or "")
                except ValueError as e:
                    self.errors.append(f"Row {line}: {e}")
                    continue

                if self.invert_amounts:
                    amount = -amount

                external_id = self._cell(row, columns.external_id) or (
                    f"csv-{self.account_external_id}-{tx_date.isoformat()}-{format_amount(amount)}-{index}"
                )
                page.added.append(
                    RawTransaction(
                        external_id=external_id,
                        account_external_id=self.account_external_id,
                        date=tx_date,
                        amount=amount,
                        description=self._cell(row, columns.description),
                        merchant=self._cell(row, columns.merchant),
                        category=self._cell(row, columns.category),
                        subcategory=self._cell(row, columns.subcategory),
                        type=self._cell(row, columns.type),
                        notes=self._cell(row, columns.notes),
                    )
                )

        if self.errors:
            logger.info(f"Skipped {len(self.errors)} unreadable row(s) in {self.file_path}")
        return page

    @staticmethod
    def _cell(row: Dict[str, str], column: Optional[str]) -> Optional[str]:
        if not column:
            return None
        value = (row.get(column) or "").strip()
        return value or None
