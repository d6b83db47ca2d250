"""Exception hierarchy shared across providers, sync, linking and the ledger."""

from __future__ import annotations

from typing import Optional


class TallyError(Exception):
    """Base class for all application errors."""


class ConfigurationError(TallyError):
    """Unknown provider or missing provider settings. Never retried."""


class ProviderAuthError(TallyError):
    """Upstream rejected the credentials."""


class ProviderAPIError(TallyError):
    """Upstream request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class NotFoundError(TallyError):
    """A connection, account, transaction, holding or budget id does not exist."""


class MissingCredentialError(TallyError):
    """The connection's secret is gone from the store."""

    def __init__(self, connection_id: str, institution_name: Optional[str] = None):
        label = institution_name or connection_id
        super().__init__(
            f"Credential for connection {label} is missing from the secret store. "
            f"Remove the connection and link the institution again."
        )
        self.connection_id = connection_id


class SyncInProgressError(TallyError):
    """A sync is already running for this connection."""

    def __init__(self, connection_id: str):
        super().__init__(f"A sync is already running for connection {connection_id}")
        self.connection_id = connection_id


class LinkAbortedError(TallyError):
    """The user left the hosted link flow without connecting."""


class PriceUnavailableError(TallyError):
    """A price source has no quote for the symbol."""
