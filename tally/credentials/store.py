"""Secret storage for provider credentials.

The encrypted file store keeps one JSON object of key -> secret, sealed with
AES-256-GCM. File layout: nonce(12) || ciphertext+tag.
"""

from __future__ import annotations

import getpass
import json
import logging
import os
import socket
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from tally.config import get_settings
from tally.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

_NONCE_SIZE = 12
_KEY_SALT = b"tally-credential-store-v1"


class SecretStore(ABC):
    """Opaque key/value store for provider secrets."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a secret, replacing any previous value."""
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the secret for key, or None when absent."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a secret.

        Returns:
            True if the key existed
        """
        pass


class InMemorySecretStore(SecretStore):
    """Process-local store. Secrets vanish on exit."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._data)


def _machine_passphrase() -> str:
    return f"{socket.gethostname()}:{getpass.getuser()}:{Path.home()}"


def derive_key(passphrase: str) -> bytes:
    """Derive a 256-bit AES key from a passphrase with scrypt."""
    kdf = Scrypt(salt=_KEY_SALT, length=32, n=2**14, r=8, p=1)
    return kdf.derive(passphrase.encode("utf-8"))


class EncryptedFileSecretStore(SecretStore):
    """AES-256-GCM encrypted JSON file, readable only by the owner."""

    def __init__(self, path: str, passphrase: Optional[str] = None):
        """Initialize the store.

        Args:
            path: File to read and write (``~`` is expanded)
            passphrase: Key material; defaults to a machine-derived value
        """
        self.path = Path(path).expanduser()
        self._aes = AESGCM(derive_key(passphrase or _machine_passphrase()))
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        blob = self.path.read_bytes()
        if len(blob) <= _NONCE_SIZE:
            return {}
        nonce, sealed = blob[:_NONCE_SIZE], blob[_NONCE_SIZE:]
        try:
            plaintext = self._aes.decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise ConfigurationError(
                f"Cannot decrypt {self.path}: the credential key does not match the one used to write it"
            ) from e
        return json.loads(plaintext.decode("utf-8"))

    def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        nonce = os.urandom(_NONCE_SIZE)
        sealed = self._aes.encrypt(nonce, json.dumps(data).encode("utf-8"), None)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(nonce + sealed)
        os.replace(tmp_path, self.path)
        os.chmod(self.path, 0o600)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def delete(self, key: str) -> bool:
        with self._lock:
            data = self._load()
            if key not in data:
                return False
            del data[key]
            self._save(data)
            return True


def build_secret_store(settings=None) -> SecretStore:
    """Create the configured file-backed secret store."""
    settings = settings or get_settings()
    return EncryptedFileSecretStore(settings.credential_store_path, settings.credential_key)
