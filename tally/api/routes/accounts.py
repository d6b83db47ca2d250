"""Account API routes."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from tally.api.deps import get_db, get_registry, get_secret_store, require_api_key, to_http_error
from tally.core.errors import TallyError
from tally.core.ledger import AccountRepository
from tally.core.providers.registry import ProviderRegistry
from tally.credentials.store import SecretStore

router = APIRouter(dependencies=[Depends(require_api_key)])


class AccountCreate(BaseModel):
    """Schema for creating a manual account."""

    name: str = Field(..., min_length=1, max_length=255)
    type: str
    institution: Optional[str] = None
    balance: Optional[float] = None
    currency: str = Field("USD", min_length=3, max_length=3)


class AccountResponse(BaseModel):
    """Schema for account response."""

    id: str
    name: str
    type: str
    institution: Optional[str]
    balance: Optional[float]
    currency: str
    source: str
    connection_id: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class AccountDeleteResponse(BaseModel):
    deleted_accounts: int
    deleted_transactions: int
    deleted_holdings: int
    connection_removed: bool


@router.get("/", response_model=List[AccountResponse])
def list_accounts(db: Session = Depends(get_db)):
    """List active accounts."""
    return AccountRepository(db).list_accounts()


@router.post("/", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def add_account(payload: AccountCreate, db: Session = Depends(get_db)):
    """Add a manual account."""
    try:
        return AccountRepository(db).add_account(
            name=payload.name,
            type=payload.type,
            institution=payload.institution,
            balance=payload.balance,
            currency=payload.currency,
        )
    except ValueError as e:
        raise to_http_error(e)


@router.delete("/{account_id}", response_model=AccountDeleteResponse)
def delete_account(
    account_id: str,
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    secrets: SecretStore = Depends(get_secret_store),
):
    """Delete an account, or the whole connection it belongs to."""
    try:
        result = AccountRepository(db, registry, secrets).delete_account(account_id)
    except TallyError as e:
        raise to_http_error(e)

    return AccountDeleteResponse(
        deleted_accounts=result.deleted_accounts,
        deleted_transactions=result.deleted_transactions,
        deleted_holdings=result.deleted_holdings,
        connection_removed=result.connection_removed,
    )
