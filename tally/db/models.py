"""SQLAlchemy ORM models."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column,
    String,
    Float,
    Boolean,
    Date,
    DateTime,
    Text,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

ACCOUNT_TYPES = ("checking", "savings", "credit", "investment", "crypto", "loan", "other")
LIABILITY_TYPES = ("credit", "loan")
HOLDINGS_VALUED_TYPES = ("investment", "crypto")
BUDGET_PERIODS = ("monthly", "weekly", "yearly")


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Get current UTC timestamp."""
    return datetime.utcnow()


class ProviderConnection(Base):
    """A linked institution or credential group at one provider."""

    __tablename__ = "provider_connections"

    id = Column(String, primary_key=True, default=generate_uuid)
    provider = Column(String(32), nullable=False)
    institution_id = Column(String(128), nullable=True)
    institution_name = Column(String(255), nullable=True)
    keychain_key = Column(String(128), nullable=False)  # Reference into the secret store
    item_id = Column(String(128), nullable=True)  # Plaid item id / Finicity institution login id
    cursor = Column(Text, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    accounts = relationship("Account", back_populates="connection", passive_deletes=True)

    def __repr__(self) -> str:
        return f"<ProviderConnection(id={self.id}, provider={self.provider}, institution={self.institution_name})>"


class Account(Base):
    """A financial account: manual, or owned by a provider connection."""

    __tablename__ = "accounts"
    __table_args__ = (UniqueConstraint("source", "external_id", name="uq_accounts_source_external"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    institution = Column(String(255), nullable=True)
    type = Column(String(32), nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    balance = Column(Float, nullable=True)
    source = Column(String(32), default="manual", nullable=False)
    external_id = Column(String(255), nullable=True)
    connection_id = Column(
        String, ForeignKey("provider_connections.id", ondelete="SET NULL"), nullable=True
    )
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    connection = relationship("ProviderConnection", back_populates="accounts")
    transactions = relationship("Transaction", back_populates="account", passive_deletes=True)
    holdings = relationship("PortfolioHolding", back_populates="account", passive_deletes=True)

    @property
    def is_liability(self) -> bool:
        """Whether this account's balance counts against net worth."""
        return self.type in LIABILITY_TYPES

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, name={self.name}, type={self.type})>"


class Transaction(Base):
    """A single signed money movement. Positive is inflow."""

    __tablename__ = "transactions"
    __table_args__ = (UniqueConstraint("source", "external_id", name="uq_transactions_source_external"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    description = Column(Text, nullable=True)
    merchant = Column(String(255), nullable=True)
    category = Column(String(128), nullable=True)
    subcategory = Column(String(128), nullable=True)
    type = Column(String(64), nullable=True)
    source = Column(String(32), default="manual", nullable=False)
    external_id = Column(String(255), nullable=True)
    pending = Column(Boolean, default=False, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    account = relationship("Account", back_populates="transactions")

    def __repr__(self) -> str:
        return f"<Transaction(id={self.id}, date={self.date}, amount={self.amount})>"


class PortfolioHolding(Base):
    """A position held in an account."""

    __tablename__ = "portfolio_holdings"
    __table_args__ = (UniqueConstraint("account_id", "symbol", name="uq_holdings_account_symbol"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    symbol = Column(String(64), nullable=False)
    name = Column(String(255), nullable=True)
    quantity = Column(Float, nullable=False)
    price = Column(Float, nullable=True)
    value = Column(Float, nullable=True)
    currency = Column(String(3), default="USD", nullable=False)
    asset_type = Column(String(32), default="stock", nullable=False)  # stock, etf, crypto, bond, other
    price_source = Column(String(32), default="manual", nullable=False)
    price_as_of = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    account = relationship("Account", back_populates="holdings")

    def __repr__(self) -> str:
        return f"<PortfolioHolding(id={self.id}, symbol={self.symbol}, quantity={self.quantity})>"


class Budget(Base):
    """Spending budget for a category over a recurring period."""

    __tablename__ = "budgets"
    __table_args__ = (UniqueConstraint("category", "period", name="uq_budgets_category_period"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    category = Column(String(128), nullable=False)
    amount = Column(Float, nullable=False)
    period = Column(String(16), default="monthly", nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Budget(category={self.category}, amount={self.amount}, period={self.period})>"


class NetWorthSnapshot(Base):
    """Immutable point-in-time net worth."""

    __tablename__ = "net_worth_snapshots"

    id = Column(String, primary_key=True, default=generate_uuid)
    date = Column(Date, nullable=False)
    total_assets = Column(Float, nullable=False)
    total_liabilities = Column(Float, nullable=False)
    net_worth = Column(Float, nullable=False)
    breakdown = Column(Text, nullable=True)  # JSON list of per-account values
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<NetWorthSnapshot(date={self.date}, net_worth={self.net_worth})>"
