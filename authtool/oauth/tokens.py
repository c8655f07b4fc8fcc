"""Token endpoint clients.

Both grants share one transport contract: a form-encoded POST, a JSON body
that is always kept for display, and success meaning HTTP 200 exactly.
Transport and JSON failures are reported as FetchFailure; a non-200 answer
is a normal result whose ``ok`` is False.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import quote

import httpx

from .errors import NetworkError, ParseFailure
from .models import PendingFlowState

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

# Characters a URI component keeps unescaped
URI_COMPONENT_SAFE_CHARS = "-_.!~*'()"

# Code exchange values keep URI delimiters so redirect_uri is sent as
# registered; form separators and '+' are still escaped
EXCHANGE_VALUE_SAFE_CHARS = ";,/?:@$-_.!~*'()"


@dataclass
class TokenResponse:
    """A token endpoint answer, held in memory only.

    Attributes:
        status_code: HTTP status returned by the token endpoint
        body: Parsed JSON body, whatever its shape
        received_at: When the response arrived (UTC)
    """

    status_code: int
    body: Any
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        """Only a 200 produces usable tokens."""
        return self.status_code == 200

    def _get(self, key: str) -> Any:
        return self.body.get(key) if isinstance(self.body, dict) else None

    @property
    def access_token(self) -> str | None:
        return self._get("access_token")

    @property
    def refresh_token(self) -> str | None:
        return self._get("refresh_token")

    @property
    def token_type(self) -> str | None:
        return self._get("token_type")

    @property
    def expires_at(self) -> datetime | None:
        """Absolute expiry computed from expires_in, if the provider sent it."""
        expires_in = self._get("expires_in")
        try:
            return self.received_at + timedelta(seconds=int(expires_in))
        except (TypeError, ValueError):
            return None

    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token)

    def get_auth_header(self) -> str:
        """Authorization header line in the form the copy action produces."""
        # Always "Bearer" per RFC 6750, whatever token_type says
        return f'"Authorization": "Bearer {self.access_token}"'


def encode_uri_component(value: str) -> str:
    """Percent-encode a single form value."""
    return quote(str(value), safe=URI_COMPONENT_SAFE_CHARS)


def build_token_request_body(
    fields: dict[str, str],
    safe: str = URI_COMPONENT_SAFE_CHARS,
) -> str:
    """Serialize form fields in order, each value percent-encoded.

    Args:
        fields: Field names and values, in the order they are sent
        safe: Characters left unescaped in values ('%' is always escaped)
    """
    return "&".join(f"{key}={quote(str(value), safe=safe)}" for key, value in fields.items())


async def _post_token_request(
    token_endpoint: str,
    form_body: str,
    grant: str,
    http_client: httpx.AsyncClient | None = None,
    timeout: float | None = None,
) -> TokenResponse:
    """POST a token request and wrap the answer.

    Raises:
        NetworkError: On transport failure
        ParseFailure: If the body is not JSON
    """
    http = http_client or httpx.AsyncClient(timeout=timeout)
    should_close = http_client is None

    logger.debug(f"POST {grant} grant to {token_endpoint}")

    try:
        response = await http.post(
            token_endpoint,
            content=form_body,
            headers={"content-type": FORM_CONTENT_TYPE},
        )

        try:
            body = response.json()
        except ValueError as e:
            raise ParseFailure(
                f"Token endpoint returned invalid JSON (HTTP {response.status_code}): {e}"
            ) from e

        if response.status_code != 200:
            logger.warning(f"Token endpoint returned HTTP {response.status_code} for {grant} grant")

        return TokenResponse(status_code=response.status_code, body=body)

    except httpx.RequestError as e:
        raise NetworkError(f"Network error during {grant} request: {e}") from e
    finally:
        if should_close:
            await http.aclose()


async def exchange_code_for_tokens(
    token_endpoint: str,
    pending: PendingFlowState,
    code: str,
    http_client: httpx.AsyncClient | None = None,
    timeout: float | None = None,
) -> TokenResponse:
    """Trade an authorization code for tokens.

    The client id, verifier and redirect URI all come from the stored
    attempt, so redirect_uri is exactly the one sent to the provider.

    Raises:
        FetchFailure: On transport or JSON failure
    """
    fields = {
        "grant_type": "authorization_code",
        "client_id": pending.client_id,
        "code_verifier": pending.code_verifier,
        "code": code,
        "redirect_uri": pending.redirect_uri,
    }
    body = build_token_request_body(fields, safe=EXCHANGE_VALUE_SAFE_CHARS)
    return await _post_token_request(
        token_endpoint, body, "authorization_code", http_client, timeout
    )


async def refresh_tokens(
    token_endpoint: str,
    client_id: str,
    refresh_token: str,
    http_client: httpx.AsyncClient | None = None,
    timeout: float | None = None,
) -> TokenResponse:
    """Trade a refresh token for a new token set.

    Raises:
        FetchFailure: On transport or JSON failure
    """
    fields = {
        "grant_type": "refresh_token",
        "client_id": client_id,
        "refresh_token": refresh_token,
    }
    body = build_token_request_body(fields)
    return await _post_token_request(token_endpoint, body, "refresh_token", http_client, timeout)
