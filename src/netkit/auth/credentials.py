"""Credential storage for the authentication token.

Stores are keyed by a service name and hold opaque bytes. The token is
serialized to JSON at this boundary (see :func:`load_token` and
:func:`save_token`); bytes that do not decode to a token read as "no
token" rather than an error.
"""

import base64
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import ValidationError as PydanticValidationError

from ..config.settings import Settings
from ..exceptions import CredentialStoreError
from ..models import Token

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_ENV = "NETKIT_ENCRYPTION_KEY"


class CredentialStore(ABC):
    """Abstract persisted key/value store for credentials."""

    @abstractmethod
    def get(self, service: str) -> Optional[bytes]:
        """Return the bytes stored for ``service``, or None."""

    @abstractmethod
    def set(self, service: str, data: Optional[bytes]) -> None:
        """Store ``data`` for ``service``. ``None`` deletes the entry."""


class InMemoryCredentialStore(CredentialStore):
    """Process-local credential store, lost on exit."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, service: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(service)

    def set(self, service: str, data: Optional[bytes]) -> None:
        with self._lock:
            if data is None:
                self._data.pop(service, None)
            else:
                self._data[service] = bytes(data)


class EncryptedFileCredentialStore(CredentialStore):
    """Credential store persisted to a Fernet-encrypted file.

    The whole file is one encrypted JSON document mapping service names to
    base64 values. Writes go to a ``.tmp`` sibling with ``0o600``
    permissions and are then atomically moved into place.

    The key is taken from ``encryption_key``, then ``NETKIT_ENCRYPTION_KEY``,
    then a ``.key`` file next to the store (generated on first use). Keys
    that are not a valid Fernet key are treated as passphrases and run
    through PBKDF2.

    :param storage_path: Location of the encrypted file
    :param encryption_key: Fernet key or passphrase
    """

    def __init__(
        self,
        storage_path: Optional[Path] = None,
        encryption_key: Optional[str] = None,
    ):
        self.storage_path = Path(storage_path) if storage_path else self._get_default_path()
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._fernet = self._initialize_encryption(encryption_key)
        self._lock = threading.Lock()
        self._cache: Dict[str, bytes] = self._load()

    @staticmethod
    def _get_default_path() -> Path:
        if os.name == "nt":
            base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        else:
            base = Path(
                os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share")
            )
        return base / "netkit" / "credentials.enc"

    def _initialize_encryption(self, key_input: Optional[str]) -> Fernet:
        if not key_input:
            key_input = os.getenv(ENCRYPTION_KEY_ENV)

        if not key_input:
            key_file = self.storage_path.parent / ".key"
            if key_file.exists():
                try:
                    return Fernet(key_file.read_bytes())
                except (OSError, ValueError) as e:
                    raise CredentialStoreError(
                        f"Could not read encryption key {key_file}: {e}"
                    ) from e
            key = Fernet.generate_key()
            try:
                key_file.write_bytes(key)
                os.chmod(key_file, 0o600)
            except OSError as e:
                logger.warning(f"Could not save encryption key: {e}")
            return Fernet(key)

        try:
            return Fernet(key_input.encode())
        except ValueError:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=32,
                salt=b"netkit-credential-store",
                iterations=100000,
            )
            return Fernet(base64.urlsafe_b64encode(kdf.derive(key_input.encode())))

    def _load(self) -> Dict[str, bytes]:
        if not self.storage_path.exists():
            return {}
        try:
            decrypted = self._fernet.decrypt(self.storage_path.read_bytes())
            stored = json.loads(decrypted)
            return {
                service: base64.b64decode(value) for service, value in stored.items()
            }
        except (OSError, InvalidToken, ValueError) as e:
            raise CredentialStoreError(
                f"Could not load credentials from {self.storage_path}: {e}"
            ) from e

    def _save(self) -> None:
        document = json.dumps(
            {
                service: base64.b64encode(value).decode("ascii")
                for service, value in self._cache.items()
            }
        )
        tmp_path = self.storage_path.with_suffix(".tmp")
        try:
            with open(tmp_path, "wb") as f:
                f.write(self._fernet.encrypt(document.encode("utf-8")))
            os.chmod(tmp_path, 0o600)
            tmp_path.replace(self.storage_path)
        except OSError as e:
            logger.error(f"Failed to save credentials: {e}")
            raise CredentialStoreError(f"Failed to save credentials: {e}") from e

    def get(self, service: str) -> Optional[bytes]:
        with self._lock:
            return self._cache.get(service)

    def set(self, service: str, data: Optional[bytes]) -> None:
        with self._lock:
            previous = dict(self._cache)
            if data is None:
                self._cache.pop(service, None)
            else:
                self._cache[service] = bytes(data)
            try:
                self._save()
            except CredentialStoreError as e:
                self._cache = previous
                e.details["service"] = service
                raise
        logger.debug(f"Stored credentials for {service}")


def load_token(store: CredentialStore, service: str) -> Optional[Token]:
    """Read and decode the token stored under ``service``.

    :return: The token, or None when absent or undecodable
    """
    data = store.get(service)
    if not data:
        return None
    try:
        return Token.from_bytes(data)
    except PydanticValidationError:
        logger.warning(f"Ignoring undecodable token stored for {service}")
        return None


def save_token(store: CredentialStore, service: str, token: Optional[Token]) -> None:
    """Encode and store ``token`` under ``service``; None deletes it."""
    store.set(service, token.to_bytes() if token is not None else None)


def create_credential_store(settings: Optional[Settings] = None) -> CredentialStore:
    """Create the credential store selected by configuration.

    :param settings: Settings; ``credential_persist`` selects the encrypted
        file store, otherwise an in-memory store is returned
    :return: A credential store
    """
    settings = settings or Settings()
    if settings.credential_persist:
        store = EncryptedFileCredentialStore(
            storage_path=settings.credential_store_path,
            encryption_key=settings.encryption_key,
        )
        logger.info(f"Using encrypted credential store at {store.storage_path}")
        return store
    logger.debug("Using in-memory credential store")
    return InMemoryCredentialStore()
