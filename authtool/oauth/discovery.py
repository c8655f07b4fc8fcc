"""OpenID Connect discovery.

Fetches the provider metadata document from
``{issuer origin}/.well-known/openid-configuration``. The document is kept
as an opaque JSON object; only the authorization and token endpoints are
ever read from it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import httpx

from .errors import DiscoveryError

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


def _http_status_hint(status_code: int) -> str:
    """Get a user-friendly hint for common HTTP status codes."""
    hints = {
        401: "Discovery endpoint requires authentication",
        403: "Access forbidden - the provider refused to serve its metadata",
        404: "Endpoint not found - the server may not support OpenID Connect discovery",
        500: "Server error - the identity provider may be experiencing issues",
        502: "Bad gateway - there may be a proxy or network issue",
        503: "Service unavailable - the server may be temporarily down",
    }
    return hints.get(status_code, "")


@dataclass
class DiscoveryDocument:
    """Provider metadata as returned by the discovery endpoint.

    The raw JSON is preserved as-is for display and persistence.
    """

    data: dict[str, Any] = field(default_factory=dict)

    def _require_endpoint(self, key: str) -> str:
        value = self.data.get(key)
        if not isinstance(value, str) or not value:
            raise DiscoveryError(f"Discovery document is missing '{key}'")
        return value

    @property
    def authorization_endpoint(self) -> str:
        """The authorization endpoint URL.

        Raises:
            DiscoveryError: If the field is absent or not a string
        """
        return self._require_endpoint("authorization_endpoint")

    @property
    def token_endpoint(self) -> str:
        """The token endpoint URL.

        Raises:
            DiscoveryError: If the field is absent or not a string
        """
        return self._require_endpoint("token_endpoint")

    def to_dict(self) -> dict[str, Any]:
        """Return the raw document."""
        return self.data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiscoveryDocument":
        """Wrap a raw document."""
        return cls(data=data)


def build_discovery_url(issuer: str) -> str:
    """Build the discovery URL from the origin of an issuer URL.

    Any path, query or fragment on the issuer is discarded.

    Raises:
        DiscoveryError: If the issuer is not an absolute URL
    """
    parsed = urlparse(issuer or "")
    if not parsed.scheme or not parsed.netloc:
        raise DiscoveryError(f"Authentication server must be an absolute URL, got: {issuer!r}")

    return f"{parsed.scheme}://{parsed.netloc}{WELL_KNOWN_PATH}"


async def resolve_discovery_document(
    issuer: str,
    http_client: httpx.AsyncClient | None = None,
    timeout: float | None = None,
) -> DiscoveryDocument:
    """Fetch and parse the discovery document for an issuer.

    A single GET, no retry and no caching.

    Args:
        issuer: The authentication server URL (only its origin is used)
        http_client: Optional HTTP client to use
        timeout: Request timeout in seconds (None waits indefinitely)

    Returns:
        DiscoveryDocument instance

    Raises:
        DiscoveryError: If the document cannot be fetched or parsed
    """
    url = build_discovery_url(issuer)

    client = http_client or httpx.AsyncClient(timeout=timeout)
    should_close = http_client is None

    logger.debug(f"Fetching discovery document from {url}")

    try:
        response = await client.get(url)

        if response.status_code != 200:
            hint = _http_status_hint(response.status_code)
            error_msg = f"Failed to fetch discovery document from {url}: HTTP {response.status_code}"
            if hint:
                error_msg += f". {hint}"
            raise DiscoveryError(error_msg)

        try:
            data = response.json()
        except (ValueError, TypeError) as e:
            raise DiscoveryError(f"Discovery document from {url} was not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise DiscoveryError(f"Discovery document from {url} is not a JSON object")

        logger.debug(f"Successfully fetched discovery document from {url}")
        return DiscoveryDocument.from_dict(data)

    except httpx.ConnectError as e:
        raise DiscoveryError(
            f"Could not connect to {url}: {e}. "
            f"Check that the URL is correct and the server is reachable."
        ) from e
    except httpx.TimeoutException as e:
        raise DiscoveryError(f"Timeout fetching discovery document from {url}: {e}") from e
    except httpx.RequestError as e:
        raise DiscoveryError(f"Network error fetching discovery document: {e}") from e
    finally:
        if should_close:
            await client.aclose()
