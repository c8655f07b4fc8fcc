"""Authorization code + PKCE flow, as an explicit state machine.

A FlowSession owns everything one operator's attempt needs: the selected
client configuration, the redirect state slot, the consumed pending flow
after the redirect, and the token responses. Presentation code never
touches that state directly; it drives transitions and reads snapshots.

    IDLE -> REQUESTED -> (navigation) -> RETURNED -> EXCHANGING
        -> EXCHANGED | EXCHANGE_FAILED
    EXCHANGED/REFRESHED/REFRESH_FAILED -> REFRESHING -> REFRESHED | REFRESH_FAILED

A browser navigation sits between REQUESTED and RETURNED. The session
that receives the redirect is usually a brand new one, rebuilt from the
redirect state slot alone.
"""

import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import httpx

from ..configs import ClientConfig
from .authorize import build_authorization_request
from .callback import ResponseEvaluation, ResponseOutcome, evaluate_authorization_response
from .discovery import resolve_discovery_document
from .errors import FetchFailure, FlowStateError, ProtocolMismatch
from .models import PendingFlowState
from .pending import RedirectStateStore
from .pkce import generate_pkce_pair
from .tokens import TokenResponse, exchange_code_for_tokens, refresh_tokens

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    RETURNED = "returned"
    EXCHANGING = "exchanging"
    EXCHANGED = "exchanged"
    EXCHANGE_FAILED = "exchange_failed"
    REFRESHING = "refreshing"
    REFRESHED = "refreshed"
    REFRESH_FAILED = "refresh_failed"


# States from which a new attempt may start
_CAN_BEGIN = {
    FlowState.IDLE,
    FlowState.REQUESTED,
    FlowState.RETURNED,
    FlowState.EXCHANGED,
    FlowState.EXCHANGE_FAILED,
    FlowState.REFRESHED,
    FlowState.REFRESH_FAILED,
}
_CAN_RECEIVE = {FlowState.IDLE, FlowState.REQUESTED}
_CAN_REFRESH = {FlowState.EXCHANGED, FlowState.REFRESHED, FlowState.REFRESH_FAILED}
_HAS_USABLE_TOKENS = {FlowState.EXCHANGED, FlowState.REFRESHED}

# A returned state equal to the stored one ends the attempt even if rejected
_CONSUMING_OUTCOMES = {ResponseOutcome.PROVIDER_ERROR, ResponseOutcome.MISSING_CODE}


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only projection of a FlowSession for display."""

    state: FlowState
    config_name: str | None
    authorization_url: str | None
    outcome: ResponseOutcome | None
    outcome_message: str | None
    authorization_response: dict[str, str] | None
    status_code: int | None
    response_body: Any
    error: str | None
    tokens_stale: bool
    can_copy: bool
    can_refresh: bool
    access_token: str | None
    authorization_header: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "config": self.config_name,
            "authorization_url": self.authorization_url,
            "outcome": self.outcome.value if self.outcome else None,
            "outcome_message": self.outcome_message,
            "authorization_response": self.authorization_response,
            "status_code": self.status_code,
            "response": self.response_body,
            "error": self.error,
            "tokens_stale": self.tokens_stale,
            "can_copy": self.can_copy,
            "can_refresh": self.can_refresh,
        }


class FlowSession:
    """Controller for one authorization attempt and its follow-up refreshes.

    Usage:
        session = FlowSession(state_store, config)
        url = await session.begin(redirect_uri)
        # ... browser navigates away and back ...
        session = FlowSession(state_store)
        if session.receive_redirect(query_string).accepted:
            await session.exchange()
            await session.refresh()
    """

    def __init__(
        self,
        state_store: RedirectStateStore,
        config: ClientConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        on_status: Callable[[str], None] | None = None,
    ):
        """Initialize a session in the IDLE state.

        Args:
            state_store: Durable slot for the pending flow
            config: Client configuration, required only to begin an attempt
            http_client: Optional shared HTTP client
            timeout: HTTP timeout in seconds (None waits indefinitely)
            on_status: Optional callback for progress messages
        """
        self.state_store = state_store
        self.config = config
        self.http_client = http_client
        self.timeout = timeout
        self.on_status = on_status or (lambda msg: None)

        self._state = FlowState.IDLE
        self._authorization_url: str | None = None
        self._pending: PendingFlowState | None = None
        self._evaluation: ResponseEvaluation | None = None
        self._last_response: TokenResponse | None = None
        self._tokens: TokenResponse | None = None
        self._refresh_token: str | None = None
        self._tokens_stale = False
        self._error: str | None = None

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def evaluation(self) -> ResponseEvaluation | None:
        return self._evaluation

    @property
    def can_copy(self) -> bool:
        return self._state in _HAS_USABLE_TOKENS and self._tokens is not None

    @property
    def can_refresh(self) -> bool:
        return self._state in _CAN_REFRESH and bool(self._refresh_token)

    def _emit_status(self, message: str) -> None:
        logger.info(message)
        self.on_status(message)

    def _transition(self, new_state: FlowState) -> None:
        logger.debug(f"Flow state {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _require(self, allowed: set[FlowState], action: str) -> None:
        if self._state not in allowed:
            raise FlowStateError(f"Cannot {action} while {self._state.value}")

    async def begin(self, redirect_uri: str) -> str:
        """Start a new attempt and return the authorization URL.

        Resolves discovery, generates a fresh PKCE pair and state, and
        persists the pending flow, replacing any unconsumed attempt.

        Raises:
            FlowStateError: If no configuration is set or a request is running
            DiscoveryError: If the provider metadata cannot be resolved
        """
        self._require(_CAN_BEGIN, "start an authorization attempt")
        if self.config is None:
            raise FlowStateError("No client configuration selected")

        self._emit_status(f"Resolving discovery document for {self.config.authentication_server}")
        document = await resolve_discovery_document(
            self.config.authentication_server, self.http_client, self.timeout
        )

        _, url = build_authorization_request(
            self.config,
            generate_pkce_pair(),
            document,
            redirect_uri,
            self.state_store,
        )

        self._authorization_url = url
        self._pending = None
        self._evaluation = None
        self._last_response = None
        self._tokens = None
        self._refresh_token = None
        self._tokens_stale = False
        self._error = None
        self._transition(FlowState.REQUESTED)
        return url

    def receive_redirect(self, query_string: str | None) -> ResponseEvaluation | None:
        """Process the query string the page was loaded with.

        Without a query string nothing happens and the session stays IDLE.
        Otherwise the stored attempt is loaded and checked; the result says
        whether exchange() may proceed.
        """
        if not query_string or not query_string.lstrip("?"):
            return None

        self._require(_CAN_RECEIVE, "handle an authorization response")

        pending = self.state_store.load()
        evaluation = evaluate_authorization_response(query_string, pending)

        self._pending = pending
        self._evaluation = evaluation
        self._transition(FlowState.RETURNED)

        if evaluation.accepted:
            self._emit_status(evaluation.message)
        else:
            logger.warning(evaluation.message)
            self.on_status(evaluation.message)
            if evaluation.outcome in _CONSUMING_OUTCOMES:
                self.state_store.clear()

        return evaluation

    async def exchange(self) -> TokenResponse:
        """Trade the accepted authorization code for tokens.

        The pending slot is cleared whatever the outcome.

        Raises:
            FlowStateError: If no authorization response was received
            ProtocolMismatch: If the response was rejected
            FetchFailure: On transport or JSON failure (state EXCHANGE_FAILED)
        """
        self._require({FlowState.RETURNED}, "exchange a code")

        evaluation = self._evaluation
        if evaluation is None or not evaluation.accepted or self._pending is None:
            outcome = evaluation.outcome if evaluation else None
            raise ProtocolMismatch(
                evaluation.message if evaluation else "No authorization response", outcome
            )

        pending = self._pending
        self._transition(FlowState.EXCHANGING)
        self._emit_status("Fetching token...")

        try:
            response = await exchange_code_for_tokens(
                pending.discovery_document.token_endpoint,
                pending,
                evaluation.code or "",
                self.http_client,
                self.timeout,
            )
        except FetchFailure as e:
            self._error = str(e)
            self._transition(FlowState.EXCHANGE_FAILED)
            raise
        finally:
            self.state_store.clear()

        self._last_response = response
        if response.ok:
            self._tokens = response
            self._refresh_token = response.refresh_token
            self._transition(FlowState.EXCHANGED)
            self._emit_status("Token exchange succeeded")
        else:
            self._transition(FlowState.EXCHANGE_FAILED)
            self._emit_status(f"Token exchange failed (HTTP {response.status_code})")

        return response

    async def refresh(self) -> TokenResponse:
        """Trade the current refresh token for a new token set.

        On failure the previous tokens are marked stale but kept, so the
        refresh can be retried with the same refresh token.

        Raises:
            FlowStateError: If no refresh token is available or a refresh is running
            FetchFailure: On transport or JSON failure (state REFRESH_FAILED)
        """
        self._require(_CAN_REFRESH, "refresh tokens")
        if not self._refresh_token or self._pending is None:
            raise FlowStateError("No refresh token available")

        pending = self._pending
        self._transition(FlowState.REFRESHING)
        self._emit_status("Refreshing token...")

        try:
            response = await refresh_tokens(
                pending.discovery_document.token_endpoint,
                pending.client_id,
                self._refresh_token,
                self.http_client,
                self.timeout,
            )
        except FetchFailure as e:
            self._error = str(e)
            self._tokens_stale = True
            self._transition(FlowState.REFRESH_FAILED)
            raise

        self._last_response = response
        if response.ok:
            self._tokens = response
            if response.refresh_token:
                self._refresh_token = response.refresh_token
            self._tokens_stale = False
            self._error = None
            self._transition(FlowState.REFRESHED)
            self._emit_status("Token refreshed successfully")
        else:
            self._tokens_stale = True
            self._transition(FlowState.REFRESH_FAILED)
            self._emit_status(f"Token refresh failed (HTTP {response.status_code})")

        return response

    def snapshot(self) -> SessionSnapshot:
        """Return a detached, read-only view of the session."""
        evaluation = self._evaluation
        response = self._last_response
        usable = self._tokens if self.can_copy else None

        return SessionSnapshot(
            state=self._state,
            config_name=self.config.name if self.config else None,
            authorization_url=self._authorization_url,
            outcome=evaluation.outcome if evaluation else None,
            outcome_message=evaluation.message if evaluation else None,
            authorization_response=dict(evaluation.params) if evaluation else None,
            status_code=response.status_code if response else None,
            response_body=copy.deepcopy(response.body) if response else None,
            error=self._error,
            tokens_stale=self._tokens_stale,
            can_copy=self.can_copy,
            can_refresh=self.can_refresh,
            access_token=usable.access_token if usable else None,
            authorization_header=usable.get_auth_header() if usable else None,
        )
