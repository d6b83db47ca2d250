"""Portfolio holdings and price refresh."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session

from tally.core.errors import NotFoundError, PriceUnavailableError
from tally.core.prices.registry import PriceRegistry
from tally.db.models import Account, PortfolioHolding, utcnow

logger = logging.getLogger(__name__)

ASSET_TYPES = ("stock", "etf", "crypto", "bond", "other")


@dataclass
class Portfolio:
    holdings: List[PortfolioHolding]
    total_value: float


@dataclass
class RefreshResult:
    """Outcome of a price refresh."""

    updated: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def _holding_value(quantity: float, price: Optional[float]) -> Optional[float]:
    if price is None:
        return None
    return round(quantity * price, 2)


class HoldingRepository:
    """Repository for PortfolioHolding operations."""

    def __init__(self, db: Session):
        """Initialize repository with database session."""
        self.db = db

    def upsert_holding(
        self,
        account_id: str,
        symbol: str,
        quantity: float,
        price: Optional[float] = None,
        name: Optional[str] = None,
        asset_type: str = "stock",
        currency: str = "USD",
    ) -> PortfolioHolding:
        """Create or replace the position for a symbol in an account.

        Args:
            account_id: Owning account
            symbol: Ticker, upper-cased
            quantity: Units held
            price: Per-unit price; value is quantity * price
            name: Display name
            asset_type: One of ASSET_TYPES

        Returns:
            The stored holding

        Raises:
            ValueError: If asset_type is unknown
            NotFoundError: If the account does not exist
        """
        if asset_type not in ASSET_TYPES:
            raise ValueError(f'Invalid asset type "{asset_type}". Must be one of: {", ".join(ASSET_TYPES)}')
        if self.db.get(Account, account_id) is None:
            raise NotFoundError(f'Account "{account_id}" not found')

        symbol = symbol.upper()
        holding = self.db.query(PortfolioHolding).filter_by(account_id=account_id, symbol=symbol).first()
        if holding is None:
            holding = PortfolioHolding(account_id=account_id, symbol=symbol)
            self.db.add(holding)

        holding.quantity = quantity
        holding.price = price
        holding.value = _holding_value(quantity, price)
        holding.asset_type = asset_type
        holding.currency = currency
        holding.price_source = "manual"
        holding.price_as_of = utcnow() if price is not None else None
        if name is not None:
            holding.name = name
        self.db.flush()
        return holding

    def delete_holding(self, holding_id: str) -> None:
        holding = self.db.get(PortfolioHolding, holding_id)
        if holding is None:
            raise NotFoundError(f'Holding "{holding_id}" not found')
        self.db.delete(holding)
        self.db.flush()

    def get_portfolio(self, account_id: Optional[str] = None) -> Portfolio:
        """Holdings ordered by value, with the total rounded to cents."""
        query = self.db.query(PortfolioHolding)
        if account_id:
            query = query.filter(PortfolioHolding.account_id == account_id)
        holdings = query.order_by(PortfolioHolding.value.desc(), PortfolioHolding.symbol).all()
        total = round(sum(h.value or 0 for h in holdings), 2)
        return Portfolio(holdings=holdings, total_value=total)

    def refresh_prices(self, price_registry: PriceRegistry, account_id: Optional[str] = None) -> RefreshResult:
        """Re-price holdings through the registry's fallback chains.

        A holding whose price cannot be found is left unchanged.
        """
        result = RefreshResult()
        for holding in self.get_portfolio(account_id).holdings:
            try:
                quote = price_registry.get_price(holding.symbol, holding.asset_type, holding.price)
            except PriceUnavailableError as e:
                logger.warning(f"Price refresh failed for {holding.symbol}: {e}")
                result.failed.append(holding.symbol)
                continue

            holding.price = quote.price
            holding.value = _holding_value(holding.quantity, quote.price)
            holding.price_source = quote.source
            holding.price_as_of = quote.as_of
            result.updated.append(holding.symbol)

        self.db.flush()
        return result
