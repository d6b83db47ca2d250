"""Credential storage module."""

from tally.credentials.store import (
    SecretStore,
    InMemorySecretStore,
    EncryptedFileSecretStore,
    build_secret_store,
    derive_key,
)

__all__ = [
    "SecretStore",
    "InMemorySecretStore",
    "EncryptedFileSecretStore",
    "build_secret_store",
    "derive_key",
]
