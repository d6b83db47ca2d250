"""Net worth snapshots."""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from tally.core.ledger.transactions import parse_iso_date
from tally.db.models import HOLDINGS_VALUED_TYPES, Account, NetWorthSnapshot, PortfolioHolding

logger = logging.getLogger(__name__)


class NetWorthService:
    """Computes and records point-in-time net worth."""

    def __init__(self, db: Session):
        self.db = db

    def _account_value(self, account: Account) -> float:
        """Cached balance, or the live holdings total for investment and crypto accounts."""
        if account.type in HOLDINGS_VALUED_TYPES:
            count, total = (
                self.db.query(func.count(PortfolioHolding.id), func.coalesce(func.sum(PortfolioHolding.value), 0.0))
                .filter(PortfolioHolding.account_id == account.id)
                .one()
            )
            if count:
                return float(total)
        return float(account.balance or 0)

    def snapshot_net_worth(self, notes: Optional[str] = None, on: Optional[date] = None) -> NetWorthSnapshot:
        """Value every active account and store the result.

        Credit and loan balances count as liabilities by absolute value.

        Args:
            notes: Free-text note on the snapshot
            on: Snapshot date, today by default

        Returns:
            The stored snapshot
        """
        total_assets = 0.0
        total_liabilities = 0.0
        breakdown = []

        accounts = self.db.query(Account).filter(Account.is_active == True).order_by(Account.name).all()  # noqa: E712
        for account in accounts:
            value = self._account_value(account)
            if account.is_liability:
                total_liabilities += abs(value)
            else:
                total_assets += value
            breakdown.append({"account_id": account.id, "name": account.name, "type": account.type, "value": round(value, 2)})

        snapshot = NetWorthSnapshot(
            date=on or date.today(),
            total_assets=round(total_assets, 2),
            total_liabilities=round(total_liabilities, 2),
            net_worth=round(total_assets - total_liabilities, 2),
            breakdown=json.dumps(breakdown),
            notes=notes,
        )
        self.db.add(snapshot)
        self.db.flush()
        logger.info(f"Net worth snapshot: {snapshot.net_worth:.2f} across {len(accounts)} accounts")
        return snapshot

    def net_worth_history(self, from_date=None, to_date=None, limit: int = 90) -> List[NetWorthSnapshot]:
        """Snapshots newest first."""
        query = self.db.query(NetWorthSnapshot)
        if from_date:
            query = query.filter(NetWorthSnapshot.date >= parse_iso_date(from_date, "from date"))
        if to_date:
            query = query.filter(NetWorthSnapshot.date <= parse_iso_date(to_date, "to date"))
        return query.order_by(NetWorthSnapshot.date.desc(), NetWorthSnapshot.created_at.desc()).limit(limit).all()
