"""Error taxonomy shared by the OAuth flow components.

Every failure here is scoped to a single flow attempt. None of them is
fatal to the process: the caller reports it and may start a new attempt.
"""

from typing import Any


class AuthToolError(Exception):
    """Base class for authtool errors."""

    pass


class FetchFailure(AuthToolError):
    """A request to the identity provider did not produce a usable response.

    This is the single reporting path for both transport failures and
    malformed response bodies, for the token exchange and the refresh alike.
    """

    pass


class NetworkError(FetchFailure):
    """Transport-level failure (connection refused, DNS, timeout...)."""

    pass


class ParseFailure(FetchFailure):
    """The provider answered, but the body was not valid JSON."""

    pass


class DiscoveryError(FetchFailure):
    """The discovery document could not be fetched or is missing endpoints."""

    pass


class HttpFailure(AuthToolError):
    """The token endpoint answered with a status other than 200."""

    def __init__(self, message: str, status_code: int, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProtocolMismatch(AuthToolError):
    """The authorization response cannot be tied to the stored attempt.

    Raised when a token exchange is requested although the returned state
    did not match, no attempt was stored, or the provider returned an error.
    """

    def __init__(self, message: str, outcome: Any = None):
        super().__init__(message)
        self.outcome = outcome


class FlowStateError(AuthToolError):
    """An operation was requested in a state that does not allow it."""

    pass
