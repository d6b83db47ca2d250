"""Provider connection API routes."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from tally.api.deps import get_db, get_registry, get_secret_store, require_api_key, to_http_error
from tally.core.errors import TallyError
from tally.core.ledger import ConnectionService
from tally.core.linking import BankConnector, CoinbaseLink, LinkOutcome
from tally.core.providers.registry import ProviderRegistry
from tally.core.sync import SyncEngine, SyncResult
from tally.credentials.store import SecretStore

router = APIRouter(dependencies=[Depends(require_api_key)])

# Rate limiter for endpoints that call upstream providers
limiter = Limiter(key_func=get_remote_address)


class ConnectionResponse(BaseModel):
    """A linked institution. Credentials are never returned."""

    id: str
    provider: str
    institution_id: Optional[str]
    institution_name: Optional[str]
    item_id: Optional[str]
    last_synced_at: Optional[datetime]
    created_at: datetime
    account_count: int


class SyncResponse(BaseModel):
    connection_id: str
    provider: str
    success: bool
    accounts_synced: int
    transactions_added: int
    transactions_modified: int
    transactions_removed: int
    transactions_skipped: int
    holdings_synced: int
    last_synced_at: Optional[datetime]
    error: Optional[str]


class RemoveResponse(BaseModel):
    deleted_accounts: int
    deleted_transactions: int
    deleted_holdings: int
    connection_removed: bool


class ConnectRequest(BaseModel):
    institution_name: str = Field(..., min_length=1)


class ConnectResponse(BaseModel):
    """A started bank link."""

    provider: str
    link_url: str
    completion_token: str
    institution_name: Optional[str]
    plaid_match: Optional[str]
    finicity_match: Optional[str]


class CompleteRequest(BaseModel):
    provider: str
    completion_token: str
    institution_name: Optional[str] = None


class CoinbaseRequest(BaseModel):
    api_key: str = Field(..., min_length=1)
    api_secret: str = Field(..., min_length=1)


class LinkedConnectionResponse(BaseModel):
    connection_id: str
    institution_name: Optional[str]
    accounts_synced: int
    transactions_added: int
    holdings_synced: int


class LinkOutcomeResponse(BaseModel):
    status: str
    connection_id: Optional[str]
    institution_name: Optional[str]
    connections: List[LinkedConnectionResponse]
    duplicates: List[str]


def _sync_response(result: SyncResult) -> SyncResponse:
    return SyncResponse(
        connection_id=result.connection_id,
        provider=result.provider,
        success=result.success,
        accounts_synced=result.accounts_synced,
        transactions_added=result.transactions_added,
        transactions_modified=result.transactions_modified,
        transactions_removed=result.transactions_removed,
        transactions_skipped=result.transactions_skipped,
        holdings_synced=result.holdings_synced,
        last_synced_at=result.last_synced_at,
        error=result.error,
    )


def _outcome_response(outcome: LinkOutcome) -> LinkOutcomeResponse:
    return LinkOutcomeResponse(
        status=outcome.status.value,
        connection_id=outcome.connection_id,
        institution_name=outcome.institution_name,
        connections=[
            LinkedConnectionResponse(
                connection_id=c.connection_id,
                institution_name=c.institution_name,
                accounts_synced=c.accounts_synced,
                transactions_added=c.transactions_added,
                holdings_synced=c.holdings_synced,
            )
            for c in outcome.connections
        ],
        duplicates=outcome.duplicates,
    )


@router.get("/", response_model=List[ConnectionResponse])
def list_connections(db: Session = Depends(get_db)):
    """List linked institutions."""
    return [ConnectionResponse(**vars(c)) for c in ConnectionService(db).list_connections()]


@router.post("/sync", response_model=List[SyncResponse])
def sync_all(
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    secrets: SecretStore = Depends(get_secret_store),
):
    """Sync every connection. Failures are reported per connection."""
    return [_sync_response(r) for r in SyncEngine(db, registry, secrets).sync_all()]


@router.post("/{connection_id}/sync", response_model=SyncResponse)
def sync_connection(
    connection_id: str,
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    secrets: SecretStore = Depends(get_secret_store),
):
    """Sync one connection."""
    try:
        result = SyncEngine(db, registry, secrets).sync_connection(connection_id)
    except TallyError as e:
        raise to_http_error(e)
    return _sync_response(result)


@router.delete("/{connection_id}", response_model=RemoveResponse)
def remove_connection(
    connection_id: str,
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    secrets: SecretStore = Depends(get_secret_store),
):
    """Unlink an institution and delete its accounts."""
    try:
        result = ConnectionService(db, registry, secrets).remove_connection(connection_id)
    except TallyError as e:
        raise to_http_error(e)
    return RemoveResponse(**vars(result))


@router.post("/connect", response_model=ConnectResponse)
@limiter.limit("10/minute")
def start_connect(
    request: Request,
    payload: ConnectRequest,
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    secrets: SecretStore = Depends(get_secret_store),
):
    """Find an institution and return a hosted link URL."""
    try:
        start = BankConnector(db, registry, secrets).connect(payload.institution_name)
    except TallyError as e:
        raise to_http_error(e)
    return ConnectResponse(**vars(start))


@router.post("/connect/complete", response_model=LinkOutcomeResponse)
def complete_connect(
    payload: CompleteRequest,
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    secrets: SecretStore = Depends(get_secret_store),
):
    """Finish a link. Returns status "waiting" until the user is done."""
    try:
        outcome = BankConnector(db, registry, secrets).complete(
            payload.provider, payload.completion_token, payload.institution_name
        )
    except TallyError as e:
        raise to_http_error(e)
    return _outcome_response(outcome)


@router.post("/coinbase", response_model=LinkOutcomeResponse)
@limiter.limit("5/minute")
def link_coinbase(
    request: Request,
    payload: CoinbaseRequest,
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    secrets: SecretStore = Depends(get_secret_store),
):
    """Link Coinbase with an API key pair."""
    try:
        outcome = CoinbaseLink(db, registry, secrets).link(payload.api_key, payload.api_secret)
    except TallyError as e:
        raise to_http_error(e)
    return _outcome_response(outcome)
