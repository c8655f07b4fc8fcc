"""Authorization response handling.

Parses the query string the provider appends to the redirect URI, checks it
against the stored attempt, and decides whether a token exchange may run.
Also provides the localhost listener that receives that redirect when
authtool plays the role of the browser page.
"""

import asyncio
import hmac
import html
import logging
import re
from dataclasses import dataclass
from enum import Enum
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qsl, urlparse

from .errors import AuthToolError
from .models import PendingFlowState

logger = logging.getLogger(__name__)

# RFC 3986 scheme followed by an authority
_URL_PREFIX = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


class CallbackError(AuthToolError):
    """Error while listening for the OAuth redirect."""

    pass


class CallbackTimeoutError(CallbackError):
    """Timeout waiting for the OAuth redirect."""

    pass


class ResponseOutcome(str, Enum):
    """Why an authorization response was accepted or rejected."""

    ACCEPTED = "accepted"
    NO_PENDING_STATE = "no_pending_state"
    STATE_MISMATCH = "state_mismatch"
    PROVIDER_ERROR = "provider_error"
    MISSING_CODE = "missing_code"


OUTCOME_MESSAGES = {
    ResponseOutcome.ACCEPTED: "Authorization response accepted",
    ResponseOutcome.NO_PENDING_STATE: "No pending authorization attempt is stored",
    ResponseOutcome.STATE_MISMATCH: (
        "Returned state does not match the stored attempt - possible CSRF or replayed response"
    ),
    ResponseOutcome.PROVIDER_ERROR: "The identity provider returned an error",
    ResponseOutcome.MISSING_CODE: "The response contains no authorization code",
}


@dataclass(frozen=True)
class ResponseEvaluation:
    """Result of checking a redirect against the stored attempt."""

    outcome: ResponseOutcome
    params: dict[str, str]
    code: str | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome is ResponseOutcome.ACCEPTED

    @property
    def message(self) -> str:
        message = OUTCOME_MESSAGES[self.outcome]
        if self.outcome is ResponseOutcome.PROVIDER_ERROR:
            message += f": {self.params.get('error')}"
            if self.params.get("error_description"):
                message += f" - {self.params['error_description']}"
        return message


def extract_query(url_or_query: str) -> str:
    """Return the query part of a URL, or the input minus a leading '?'."""
    text = (url_or_query or "").strip()
    if _URL_PREFIX.match(text):
        return urlparse(text).query
    return text[1:] if text.startswith("?") else text


def parse_query_string(query_string: str) -> dict[str, str]:
    """Parse a query string into a flat dict.

    Values are percent-decoded. When a key repeats, the last value wins.
    """
    return dict(parse_qsl(extract_query(query_string), keep_blank_values=True))


def _states_match(returned: str, expected: str) -> bool:
    # Exact comparison, constant time
    return hmac.compare_digest(returned.encode("utf-8"), expected.encode("utf-8"))


def evaluate_authorization_response(
    query_string: str,
    pending: PendingFlowState | None,
) -> ResponseEvaluation:
    """Check a redirect query against the stored attempt.

    Never raises; every rejection is reported through the outcome.
    """
    params = parse_query_string(query_string)

    if pending is None:
        outcome = ResponseOutcome.NO_PENDING_STATE
    elif "state" not in params or not _states_match(params["state"], pending.state):
        outcome = ResponseOutcome.STATE_MISMATCH
    elif "error" in params:
        outcome = ResponseOutcome.PROVIDER_ERROR
    elif not params.get("code"):
        outcome = ResponseOutcome.MISSING_CODE
    else:
        return ResponseEvaluation(ResponseOutcome.ACCEPTED, params, params["code"])

    logger.debug(f"Authorization response rejected: {outcome.value}")
    return ResponseEvaluation(outcome, params)


def handle_authorization_response(
    query_string: str,
    pending: PendingFlowState | None,
) -> str | None:
    """Return the authorization code if the redirect may be exchanged, else None."""
    return evaluate_authorization_response(query_string, pending).code


# Page shown in the browser once the redirect has been captured
RESULT_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>{title}</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; margin: 40px; }}
        pre {{ background: #f4f4f4; padding: 12px; border-radius: 8px; }}
    </style>
</head>
<body>
    <h1>{title}</h1>
    <p>Return to the terminal to see the token exchange.</p>
    <pre>{query}</pre>
</body>
</html>"""

# Headers sent with the HTML page; the page has no scripts and no frames
PAGE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Content-Security-Policy": "default-src 'none'; style-src 'unsafe-inline'",
    "Cache-Control": "no-store",
}

class LocalhostCallbackServer:
    """Loopback HTTP listener that receives the provider's redirect.

    Binds to the host and port of the redirect URI, so the URI registered
    with the provider stays stable across runs. Only the raw query string
    is captured; checking it is left to the response handler.

    Usage:
        async with LocalhostCallbackServer(redirect_uri) as server:
            # Send the browser to the authorization URL
            query = await server.wait_for_callback()
    """

    def __init__(self, redirect_uri: str, timeout: float | None = None):
        """
        Args:
            redirect_uri: Loopback URI, e.g. http://127.0.0.1:8765/callback
            timeout: Seconds to wait for the redirect (None waits forever)
        """
        parsed = urlparse(redirect_uri)
        if parsed.scheme != "http" or not parsed.hostname:
            raise CallbackError(f"Redirect URI must be a loopback http:// URI, got: {redirect_uri}")

        self.redirect_uri = redirect_uri
        self.host = parsed.hostname
        self.port = parsed.port if parsed.port is not None else 80
        self.path = parsed.path or "/"
        self.timeout = timeout

        self._server: asyncio.Server | None = None
        self._received: asyncio.Future[str] | None = None

    async def start(self) -> None:
        """Bind the listener."""
        self._received = asyncio.get_running_loop().create_future()
        try:
            self._server = await asyncio.start_server(self._serve, self.host, self.port)
        except OSError as e:
            raise CallbackError(f"Could not listen on {self.host}:{self.port}: {e}") from e

        logger.debug(f"Listening for the redirect to {self.redirect_uri}")

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.debug(f"Stopped listening on {self.host}:{self.port}")

    async def wait_for_callback(self) -> str:
        """Block until the redirect arrives and return its raw query string.

        Raises:
            CallbackError: If start() was not called
            CallbackTimeoutError: If no redirect arrives within the timeout
        """
        if self._received is None:
            raise CallbackError("Server not started")

        try:
            return await asyncio.wait_for(asyncio.shield(self._received), self.timeout)
        except asyncio.TimeoutError:
            raise CallbackTimeoutError(
                f"Timeout waiting for OAuth redirect after {self.timeout} seconds"
            ) from None

    async def _serve(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Answer one connection; only GET on the redirect path is captured."""
        try:
            head = await reader.readuntil(b"\r\n\r\n")
        except asyncio.LimitOverrunError:
            await self._respond(writer, HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE)
            return
        except (asyncio.IncompleteReadError, OSError) as e:
            # Browsers open speculative connections and drop them
            logger.debug(f"Connection closed before a full request: {e!r}")
            writer.close()
            return

        request_line = head.split(b"\r\n", 1)[0].decode("latin-1")
        try:
            method, target, _version = request_line.split(" ", 2)
        except ValueError:
            await self._respond(writer, HTTPStatus.BAD_REQUEST)
            return

        if method != "GET":
            await self._respond(writer, HTTPStatus.METHOD_NOT_ALLOWED)
            return

        parsed = urlparse(target)
        if parsed.path != self.path:
            await self._respond(writer, HTTPStatus.NOT_FOUND)
            return

        title = "Authorization Response Received" if parsed.query else "No Query String"
        page = RESULT_HTML.format(title=title, query=html.escape(parsed.query))
        await self._respond(writer, HTTPStatus.OK, page, "text/html; charset=utf-8", PAGE_HEADERS)

        if self._received is not None and not self._received.done():
            self._received.set_result(parsed.query)

    async def _respond(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        body: str | None = None,
        content_type: str = "text/plain; charset=utf-8",
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        """Write a complete response and close the connection."""
        payload = (body if body is not None else status.phrase).encode("utf-8")
        headers = {
            "Content-Type": content_type,
            "Content-Length": str(len(payload)),
            **(extra_headers or {}),
            "Connection": "close",
        }
        head = f"HTTP/1.1 {status.value} {status.phrase}\r\n"
        head += "".join(f"{name}: {value}\r\n" for name, value in headers.items())

        try:
            writer.write(head.encode("latin-1") + b"\r\n" + payload)
            await writer.drain()
        except OSError as e:
            logger.warning(f"Could not answer callback request: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def __aenter__(self) -> "LocalhostCallbackServer":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()
