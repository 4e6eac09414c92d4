"""Credential storage and coordinated token refresh."""

from .coordinator import (
    AuthConfig,
    LoopDetector,
    RefreshCoordinator,
    bearer_authorizer,
)
from .credentials import (
    CredentialStore,
    EncryptedFileCredentialStore,
    InMemoryCredentialStore,
    create_credential_store,
    load_token,
    save_token,
)
from .single_flight import SingleFlight

__all__ = [
    "AuthConfig",
    "CredentialStore",
    "EncryptedFileCredentialStore",
    "InMemoryCredentialStore",
    "LoopDetector",
    "RefreshCoordinator",
    "SingleFlight",
    "bearer_authorizer",
    "create_credential_store",
    "load_token",
    "save_token",
]
