"""Tests for the token exchange and refresh clients."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from json import JSONDecodeError

import httpx
import pytest

from authtool.oauth.errors import FetchFailure, NetworkError, ParseFailure
from authtool.oauth.tokens import (
    FORM_CONTENT_TYPE,
    TokenResponse,
    build_token_request_body,
    encode_uri_component,
    exchange_code_for_tokens,
    refresh_tokens,
)

TOKEN_ENDPOINT = "https://idp.example/oauth/token"


class TestTokenResponse:
    """Tests for TokenResponse."""

    def test_ok_only_for_200(self) -> None:
        assert TokenResponse(200, {}).ok
        assert not TokenResponse(201, {}).ok
        assert not TokenResponse(400, {"error": "invalid_grant"}).ok

    def test_token_fields(self) -> None:
        response = TokenResponse(
            200,
            {"access_token": "A", "refresh_token": "R", "token_type": "Bearer", "id_token": "I"},
        )
        assert response.access_token == "A"
        assert response.refresh_token == "R"
        assert response.token_type == "Bearer"
        assert response.has_refresh_token()

    def test_non_object_body(self) -> None:
        response = TokenResponse(200, ["not", "an", "object"])
        assert response.access_token is None
        assert not response.has_refresh_token()

    def test_expires_at(self) -> None:
        received = datetime(2024, 1, 1, tzinfo=timezone.utc)
        response = TokenResponse(200, {"expires_in": 3600}, received_at=received)
        assert response.expires_at == received + timedelta(hours=1)

    def test_expires_at_missing(self) -> None:
        assert TokenResponse(200, {"access_token": "A"}).expires_at is None
        assert TokenResponse(200, {"expires_in": "soon"}).expires_at is None

    def test_auth_header(self) -> None:
        response = TokenResponse(200, {"access_token": "A", "token_type": "DPoP"})
        assert response.get_auth_header() == '"Authorization": "Bearer A"'


class TestRequestBody:
    def test_encode_uri_component(self) -> None:
        assert encode_uri_component("a b&c=d/e") == "a%20b%26c%3Dd%2Fe"
        assert encode_uri_component("-_.!~*'()") == "-_.!~*'()"

    def test_keeps_field_order(self) -> None:
        body = build_token_request_body({"b": "2", "a": "1"})
        assert body == "b=2&a=1"

    def test_custom_safe_set(self) -> None:
        body = build_token_request_body({"v": "http://h/p?a&b%"}, safe=":/?")
        assert body == "v=http://h/p?a%26b%25"


class TestExchangeCodeForTokens:
    """Tests for the authorization_code grant."""

    @pytest.mark.asyncio
    async def test_request_shape(self, pending_state, make_response, make_http_client) -> None:
        client = make_http_client(post=make_response(200, {"access_token": "A"}))

        await exchange_code_for_tokens(TOKEN_ENDPOINT, pending_state, "123", http_client=client)

        client.post.assert_awaited_once()
        args, kwargs = client.post.call_args
        assert args[0] == TOKEN_ENDPOINT
        assert kwargs["content"] == (
            "grant_type=authorization_code"
            "&client_id=abc"
            "&code_verifier=verifier123"
            "&code=123"
            "&redirect_uri=http://127.0.0.1:8765/callback"
        )
        assert kwargs["headers"] == {"content-type": FORM_CONTENT_TYPE}

    @pytest.mark.asyncio
    async def test_form_separators_in_values_are_escaped(
        self, pending_state, make_response, make_http_client
    ) -> None:
        pending = replace(
            pending_state,
            request=replace(pending_state.request, redirect_uri="http://127.0.0.1:8765/cb?a=1&b=2"),
        )
        client = make_http_client(post=make_response(200, {}))

        await exchange_code_for_tokens(TOKEN_ENDPOINT, pending, "x+y=z&w%", http_client=client)

        content = client.post.call_args.kwargs["content"]
        assert "&code=x%2By%3Dz%26w%25&" in content
        assert content.endswith("&redirect_uri=http://127.0.0.1:8765/cb?a%3D1%26b%3D2")

    @pytest.mark.asyncio
    async def test_never_sends_client_secret(self, pending_state, make_response, make_http_client) -> None:
        client = make_http_client(post=make_response(200, {}))

        await exchange_code_for_tokens(TOKEN_ENDPOINT, pending_state, "123", http_client=client)

        assert "client_secret" not in client.post.call_args.kwargs["content"]

    @pytest.mark.asyncio
    async def test_success(self, pending_state, make_response, make_http_client) -> None:
        body = {"access_token": "A", "refresh_token": "R", "expires_in": 60}
        client = make_http_client(post=make_response(200, body))

        response = await exchange_code_for_tokens(TOKEN_ENDPOINT, pending_state, "123", http_client=client)

        assert response.ok
        assert response.body == body
        client.aclose.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_error_status_is_returned(self, pending_state, make_response, make_http_client) -> None:
        body = {"error": "invalid_grant"}
        client = make_http_client(post=make_response(400, body))

        response = await exchange_code_for_tokens(TOKEN_ENDPOINT, pending_state, "123", http_client=client)

        assert not response.ok
        assert response.status_code == 400
        assert response.body == body

    @pytest.mark.asyncio
    async def test_invalid_json_raises_parse_failure(self, pending_state, make_response, make_http_client) -> None:
        client = make_http_client(
            post=make_response(502, json_error=JSONDecodeError("Expecting value", "<html>", 0))
        )

        with pytest.raises(ParseFailure, match="HTTP 502"):
            await exchange_code_for_tokens(TOKEN_ENDPOINT, pending_state, "123", http_client=client)

    @pytest.mark.asyncio
    async def test_network_error(self, pending_state, make_http_client) -> None:
        client = make_http_client(post=[httpx.ConnectError("refused")])

        with pytest.raises(NetworkError, match="authorization_code"):
            await exchange_code_for_tokens(TOKEN_ENDPOINT, pending_state, "123", http_client=client)

    @pytest.mark.asyncio
    async def test_failures_share_a_base(self, pending_state, make_http_client) -> None:
        client = make_http_client(post=[httpx.ReadTimeout("slow")])

        with pytest.raises(FetchFailure):
            await exchange_code_for_tokens(TOKEN_ENDPOINT, pending_state, "123", http_client=client)


class TestRefreshTokens:
    """Tests for the refresh_token grant."""

    @pytest.mark.asyncio
    async def test_request_shape(self, make_response, make_http_client) -> None:
        client = make_http_client(post=make_response(200, {"access_token": "A2"}))

        response = await refresh_tokens(TOKEN_ENDPOINT, "X", "Y", http_client=client)

        assert response.access_token == "A2"
        kwargs = client.post.call_args.kwargs
        assert kwargs["content"] == "grant_type=refresh_token&client_id=X&refresh_token=Y"
        assert kwargs["headers"]["content-type"] == "application/x-www-form-urlencoded"

    @pytest.mark.asyncio
    async def test_encodes_refresh_token(self, make_response, make_http_client) -> None:
        client = make_http_client(post=make_response(200, {}))

        await refresh_tokens(TOKEN_ENDPOINT, "X", "a+b/c=", http_client=client)

        assert client.post.call_args.kwargs["content"].endswith("refresh_token=a%2Bb%2Fc%3D")

    @pytest.mark.asyncio
    async def test_rejected_refresh(self, make_response, make_http_client) -> None:
        client = make_http_client(post=make_response(401, {"error": "invalid_grant"}))

        response = await refresh_tokens(TOKEN_ENDPOINT, "X", "Y", http_client=client)

        assert not response.ok
        assert response.body["error"] == "invalid_grant"

    @pytest.mark.asyncio
    async def test_network_error(self, make_http_client) -> None:
        client = make_http_client(post=[httpx.ConnectError("refused")])

        with pytest.raises(NetworkError, match="refresh_token"):
            await refresh_tokens(TOKEN_ENDPOINT, "X", "Y", http_client=client)
