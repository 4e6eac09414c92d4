import sys
from pathlib import Path
from typing import Callable, List

import httpx
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from netkit.auth import AuthConfig, InMemoryCredentialStore, RefreshCoordinator  # noqa: E402
from netkit.client import NetworkProvider  # noqa: E402
from netkit.models import Token  # noqa: E402

BASE_URL = "https://api.example.com/v1/"


def pytest_configure(config):
    # Register the asyncio marker so pytest doesn't warn when it's used.
    config.addinivalue_line(
        "markers", "asyncio: mark test to run in an asyncio event loop"
    )
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line("markers", "auth: mark test as testing authentication")


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch, tmp_path):
    """Isolate Settings from the developer's environment and .env file."""
    for name in (
        "NETKIT_BASE_URL",
        "NETKIT_ENCRYPTION_KEY",
        "NETKIT_CREDENTIAL_PERSIST",
        "NETKIT_CREDENTIAL_STORE_PATH",
        "NETKIT_AUTH_FAILURE_CODES",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NETKIT_LOG_LEVEL", "INFO")
    yield


@pytest.fixture
def store():
    return InMemoryCredentialStore()


@pytest.fixture
def make_auth(store):
    """Build an AuthConfig with recording relogin/refresh operations."""

    def _make(
        relogin_token: str = "relogged",
        refresh: Callable = None,
        **kwargs,
    ) -> AuthConfig:
        calls: List[str] = []

        async def relogin():
            calls.append("relogin")
            auth.update_token(Token(auth=relogin_token))

        auth = AuthConfig(
            relogin=relogin,
            store=store,
            refresh_token=refresh,
            coordinator=kwargs.pop("coordinator", RefreshCoordinator()),
            **kwargs,
        )
        auth.calls = calls
        return auth

    return _make


@pytest.fixture
def make_provider():
    """Build a provider around an httpx.MockTransport handler."""

    def _make(handler, **kwargs) -> NetworkProvider:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        kwargs.setdefault("base_url", BASE_URL)
        return NetworkProvider(client=client, **kwargs)

    return _make
