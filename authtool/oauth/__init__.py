"""OAuth 2.0 authorization code flow with PKCE.

Main Components:
    FlowSession: State machine driving one attempt and its refreshes
    RedirectStateStore: Durable slot that survives the browser redirect
    build_authorization_request: Builds and persists an attempt
    handle_authorization_response: Checks the redirect against the slot
    exchange_code_for_tokens / refresh_tokens: Token endpoint clients

Quick Start:
    from authtool.oauth import FlowSession

    session = FlowSession(state_store, config)
    url = await session.begin(redirect_uri)
    # ... the browser leaves and comes back with a query string ...
    session = FlowSession(state_store)
    if session.receive_redirect(query).accepted:
        await session.exchange()
"""

from .authorize import build_authorization_request, build_authorization_url, encode_uri
from .callback import (
    CallbackError,
    CallbackTimeoutError,
    LocalhostCallbackServer,
    ResponseEvaluation,
    ResponseOutcome,
    evaluate_authorization_response,
    handle_authorization_response,
    parse_query_string,
)
from .discovery import DiscoveryDocument, build_discovery_url, resolve_discovery_document
from .errors import (
    AuthToolError,
    DiscoveryError,
    FetchFailure,
    FlowStateError,
    HttpFailure,
    NetworkError,
    ParseFailure,
    ProtocolMismatch,
)
from .flow import FlowSession, FlowState, SessionSnapshot
from .models import AuthorizationRequest, PendingFlowState
from .pending import PENDING_FLOW_KEY, RedirectStateStore
from .pkce import PKCEPair, generate_code_challenge, generate_code_verifier, generate_pkce_pair, generate_state
from .tokens import TokenResponse, build_token_request_body, exchange_code_for_tokens, refresh_tokens

__all__ = [
    # Session (main entry point)
    "FlowSession",
    "FlowState",
    "SessionSnapshot",
    # Authorization request
    "AuthorizationRequest",
    "build_authorization_request",
    "build_authorization_url",
    "encode_uri",
    # Redirect state
    "PendingFlowState",
    "RedirectStateStore",
    "PENDING_FLOW_KEY",
    # Authorization response
    "evaluate_authorization_response",
    "handle_authorization_response",
    "parse_query_string",
    "ResponseEvaluation",
    "ResponseOutcome",
    "LocalhostCallbackServer",
    "CallbackError",
    "CallbackTimeoutError",
    # Discovery
    "DiscoveryDocument",
    "build_discovery_url",
    "resolve_discovery_document",
    # Tokens
    "TokenResponse",
    "build_token_request_body",
    "exchange_code_for_tokens",
    "refresh_tokens",
    # PKCE
    "PKCEPair",
    "generate_pkce_pair",
    "generate_code_verifier",
    "generate_code_challenge",
    "generate_state",
    # Errors
    "AuthToolError",
    "FetchFailure",
    "NetworkError",
    "ParseFailure",
    "DiscoveryError",
    "HttpFailure",
    "ProtocolMismatch",
    "FlowStateError",
]
