"""Shared fixtures and utilities for authtool tests."""

from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from cryptography.fernet import Fernet

from authtool.configs import ClientConfig, ConfigurationStore
from authtool.oauth.discovery import DiscoveryDocument
from authtool.oauth.models import AuthorizationRequest, PendingFlowState
from authtool.oauth.pending import RedirectStateStore
from authtool.storage import CONFIGURATIONS_FILE, SESSION_FILE, LocalStore


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def fake_keyring() -> Generator[MagicMock, None, None]:
    """Replace the OS keyring with an in-memory key for every test."""
    key = Fernet.generate_key().decode("ascii")
    with patch("authtool.storage.keyring") as mock_keyring:
        mock_keyring.get_password.return_value = key
        yield mock_keyring


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep authtool environment variables from leaking into tests."""
    for var in ("AUTHTOOL_STORE_DIR", "AUTHTOOL_REDIRECT_URI", "AUTHTOOL_HTTP_TIMEOUT"):
        monkeypatch.delenv(var, raising=False)


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def session_store(tmp_path: Path) -> LocalStore:
    """Session store in a temporary directory."""
    return LocalStore(SESSION_FILE, tmp_path)


@pytest.fixture
def state_store(session_store: LocalStore) -> RedirectStateStore:
    """Redirect state slot backed by the temporary session store."""
    return RedirectStateStore(session_store)


@pytest.fixture
def config_store(tmp_path: Path, session_store: LocalStore) -> ConfigurationStore:
    """Configuration store in a temporary directory."""
    return ConfigurationStore(LocalStore(CONFIGURATIONS_FILE, tmp_path), session_store)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def sample_config() -> ClientConfig:
    """Client configuration used across flow tests."""
    return ClientConfig(
        name="example",
        authentication_server="https://idp.example",
        client_id="abc",
        scope="openid",
        audience="api",
        client_secret="never-sent-secret",
    )


@pytest.fixture
def discovery_data() -> dict[str, Any]:
    """Raw discovery document."""
    return {
        "issuer": "https://idp.example/",
        "authorization_endpoint": "https://idp.example/authorize",
        "token_endpoint": "https://idp.example/oauth/token",
        "code_challenge_methods_supported": ["S256"],
    }


@pytest.fixture
def discovery_document(discovery_data: dict[str, Any]) -> DiscoveryDocument:
    return DiscoveryDocument.from_dict(discovery_data)


@pytest.fixture
def pending_state(discovery_document: DiscoveryDocument) -> PendingFlowState:
    """Pending flow whose state is "s1"."""
    return PendingFlowState(
        request=AuthorizationRequest(
            code_challenge="challenge",
            code_challenge_method="S256",
            client_id="abc",
            redirect_uri="http://127.0.0.1:8765/callback",
            scope="openid",
            audience="api",
            state="s1",
        ),
        code_verifier="verifier123",
        discovery_document=discovery_document,
    )


# ============================================================================
# HTTP Helpers
# ============================================================================


def _make_response(status_code: int = 200, json_body: Any = None, json_error: Exception | None = None) -> MagicMock:
    """Create a mock httpx response."""
    response = MagicMock()
    response.status_code = status_code
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = json_body
    return response


def _make_http_client(*, get: Any = None, post: Any = None) -> AsyncMock:
    """Create a mock httpx.AsyncClient.

    Each argument is either a response or a list of responses/exceptions
    returned on successive calls.
    """
    client = AsyncMock()
    for name, value in (("get", get), ("post", post)):
        if isinstance(value, list):
            setattr(client, name, AsyncMock(side_effect=value))
        else:
            setattr(client, name, AsyncMock(return_value=value))
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def make_response() -> Any:
    """Factory for mock httpx responses."""
    return _make_response


@pytest.fixture
def make_http_client() -> Any:
    """Factory for mock httpx.AsyncClient instances."""
    return _make_http_client
