"""Authorization request construction.

Builds the request for one attempt, persists it together with the PKCE
verifier and the discovery document, and returns the URL the browser
must be sent to.
"""

import logging
from typing import TYPE_CHECKING
from urllib.parse import quote

from .discovery import DiscoveryDocument
from .models import AuthorizationRequest, PendingFlowState
from .pkce import PKCEPair, generate_state

if TYPE_CHECKING:
    from ..configs import ClientConfig
    from .pending import RedirectStateStore

logger = logging.getLogger(__name__)

# Characters left untouched when a complete URI is escaped
URI_SAFE_CHARS = ";,/?:@&=+$-_.!~*'()#"


def encode_uri(text: str) -> str:
    """Percent-encode a complete URI.

    Reserved URI characters are kept so the structure of the URL survives;
    spaces, non-ASCII and other unsafe characters are escaped.
    """
    return quote(text, safe=URI_SAFE_CHARS)


def to_query_string(params: dict[str, str]) -> str:
    """Join parameters as key=value pairs without escaping the values."""
    return "&".join(f"{key}={value}" for key, value in params.items())


def build_authorization_url(authorization_endpoint: str, request: AuthorizationRequest) -> str:
    """Build the URL the browser navigates to for this request."""
    query = to_query_string(request.to_query_params())
    return encode_uri(f"{authorization_endpoint}?{query}")


def build_authorization_request(
    config: "ClientConfig",
    pkce: PKCEPair,
    discovery_document: DiscoveryDocument,
    redirect_uri: str,
    state_store: "RedirectStateStore",
    state: str | None = None,
) -> tuple[AuthorizationRequest, str]:
    """Build the authorization request and persist the pending attempt.

    The pending flow is saved before returning because nothing else
    survives the navigation to the authorization endpoint.

    Args:
        config: Client configuration (client_secret is never read)
        pkce: Fresh PKCE pair for this attempt
        discovery_document: Provider metadata
        redirect_uri: Where the provider should send the browser back
        state_store: Slot that receives the pending flow
        state: Explicit state value; a fresh random one when omitted

    Returns:
        Tuple of (request, authorization URL)

    Raises:
        DiscoveryError: If the document has no authorization endpoint
    """
    request = AuthorizationRequest(
        code_challenge=pkce.challenge,
        code_challenge_method=pkce.method,
        client_id=config.client_id,
        redirect_uri=redirect_uri,
        scope=config.scope,
        audience=config.audience or None,
        state=state or generate_state(),
    )

    url = build_authorization_url(discovery_document.authorization_endpoint, request)

    state_store.save(
        PendingFlowState(
            request=request,
            code_verifier=pkce.verifier,
            discovery_document=discovery_document,
        )
    )

    logger.debug(f"Built authorization request for {discovery_document.authorization_endpoint}")
    return request, url
