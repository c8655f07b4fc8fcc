"""Data structures that cross the browser redirect.

The authorization request and the pending flow state are serialized with
the same snake_case keys that appear on the wire, so the stored form reads
exactly like the query that was sent.
"""

from dataclasses import dataclass, field
from typing import Any

from .discovery import DiscoveryDocument


@dataclass(frozen=True)
class AuthorizationRequest:
    """Parameters of one authorization request.

    Attributes:
        code_challenge: PKCE S256 challenge
        code_challenge_method: Always "S256"
        client_id: Public client identifier
        redirect_uri: Where the provider sends the browser back
        scope: Space-separated scopes
        audience: Optional API audience (omitted from the URL when empty)
        state: Per-attempt anti-forgery value
        response_type: Always "code"
    """

    code_challenge: str
    code_challenge_method: str
    client_id: str
    redirect_uri: str
    scope: str
    audience: str | None
    state: str
    response_type: str = "code"

    def to_query_params(self) -> dict[str, str]:
        """Return the query parameters in the order they are sent."""
        params: dict[str, str] = {
            "response_type": self.response_type,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
        }
        if self.audience:
            params["audience"] = self.audience
        params["state"] = self.state
        return params

    def to_dict(self) -> dict[str, Any]:
        return {
            "response_type": self.response_type,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "audience": self.audience,
            "state": self.state,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthorizationRequest":
        return cls(
            response_type=data.get("response_type", "code"),
            code_challenge=data["code_challenge"],
            code_challenge_method=data["code_challenge_method"],
            client_id=data["client_id"],
            redirect_uri=data["redirect_uri"],
            scope=data["scope"],
            audience=data.get("audience"),
            state=data["state"],
        )


@dataclass(frozen=True)
class PendingFlowState:
    """Everything needed to finish an attempt after the redirect returns.

    Created right before navigating to the authorization endpoint and read
    back, never modified, once the provider redirects to us.
    """

    request: AuthorizationRequest
    code_verifier: str
    discovery_document: DiscoveryDocument = field(default_factory=DiscoveryDocument)

    @property
    def state(self) -> str:
        return self.request.state

    @property
    def client_id(self) -> str:
        return self.request.client_id

    @property
    def redirect_uri(self) -> str:
        return self.request.redirect_uri

    def to_dict(self) -> dict[str, Any]:
        """Flatten to the persisted form: request keys plus verifier and document."""
        data = self.request.to_dict()
        data["code_verifier"] = self.code_verifier
        data["discovery_document"] = self.discovery_document.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingFlowState":
        """Rebuild from the persisted form.

        Raises:
            KeyError: If a required key is missing
            TypeError: If the document is not a JSON object
        """
        document = data.get("discovery_document") or {}
        if not isinstance(document, dict):
            raise TypeError("discovery_document must be a JSON object")

        return cls(
            request=AuthorizationRequest.from_dict(data),
            code_verifier=data["code_verifier"],
            discovery_document=DiscoveryDocument.from_dict(document),
        )
