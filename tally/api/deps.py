"""FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache
from typing import Generator, Optional

from fastapi import Header, HTTPException, status
from sqlalchemy.orm import Session

from tally.config import get_settings
from tally.core.errors import (
    ConfigurationError,
    LinkAbortedError,
    MissingCredentialError,
    NotFoundError,
    ProviderAPIError,
    ProviderAuthError,
    SyncInProgressError,
    TallyError,
)
from tally.core.providers.registry import ProviderRegistry, build_default_registry
from tally.credentials.store import SecretStore, build_secret_store
from tally.db.database import get_db as db_context

settings = get_settings()

# Most specific first
ERROR_STATUS = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (SyncInProgressError, status.HTTP_409_CONFLICT),
    (MissingCredentialError, status.HTTP_409_CONFLICT),
    (LinkAbortedError, status.HTTP_400_BAD_REQUEST),
    (ProviderAuthError, status.HTTP_400_BAD_REQUEST),
    (ProviderAPIError, status.HTTP_502_BAD_GATEWAY),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def get_db() -> Generator[Session, None, None]:
    """Yield a database session."""
    with db_context() as db:
        yield db


@lru_cache()
def get_registry() -> ProviderRegistry:
    """Provider registry shared by all requests."""
    return build_default_registry(settings)


@lru_cache()
def get_secret_store() -> SecretStore:
    """Secret store shared by all requests."""
    return build_secret_store(settings)


def require_api_key(x_api_key: Optional[str] = Header(None)) -> None:
    """Check X-API-Key when an API key is configured.

    Without a configured key every request is allowed (local use).
    """
    if not settings.api_key:
        return
    if x_api_key != settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )


def to_http_error(error: Exception) -> HTTPException:
    """Map a domain error to an HTTP error."""
    if isinstance(error, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    for error_type, code in ERROR_STATUS:
        if isinstance(error, error_type):
            return HTTPException(status_code=code, detail=str(error))
    if isinstance(error, TallyError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
    raise error
