"""Tests for token exchange and refresh.

Covers:
- Successful authorization code to token exchange
- Form encoding and verifier presentation
- One exchange per session
- Error response handling and error taxonomy
- Token refresh
"""

import json
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs

import httpx
import pytest

from forgeauth.auth.models.config import OAuth2Config
from forgeauth.auth.models.errors import (
    InvalidResponseError,
    NetworkError,
    SessionConsumedError,
    TokenExchangeError,
    TokenRefreshError,
)
from forgeauth.auth.services.flow import OAuth2FlowManager
from forgeauth.auth.services.tokens import OAuth2TokenManager


def make_response(status_code: int, payload=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    if payload is None:
        response.json.side_effect = json.JSONDecodeError("Expecting value", text, 0)
    else:
        response.json.return_value = payload
    response.text = text or (json.dumps(payload) if payload is not None else "")
    return response


@pytest.fixture
def oauth_config() -> OAuth2Config:
    return OAuth2Config(
        client_id="client-456",
        redirect_uri="https://app.local/cb",
        server_url="https://mdm.example.com",
    )


@pytest.fixture
def session(oauth_config):
    return OAuth2FlowManager().prepare_session(oauth_config)


class TestTokenExchange:
    """Test authorization code to access token exchange."""

    def setup_method(self):
        # Arrange
        self.http_client = AsyncMock()
        self.token_manager = OAuth2TokenManager(http_client=self.http_client)

    async def test_successful_token_exchange_with_all_fields(self, session):
        # Arrange
        verifier = session.pkce.code_verifier.reveal()
        self.http_client.post.return_value = make_response(
            200,
            {
                "access_token": "access-token-xyz",
                "token_type": "Bearer",
                "expires_in": 3600,
                "refresh_token": "refresh-token-abc",
                "scope": "read",
            },
        )

        # Act
        token_response = await self.token_manager.exchange_code_for_token(
            "auth-code-123", session
        )

        # Assert
        assert token_response.access_token == "access-token-xyz"
        assert token_response.token_type == "Bearer"
        assert token_response.expires_in == 3600
        assert token_response.refresh_token == "refresh-token-abc"
        assert token_response.granted_scopes() == ("read",)

        # Verify HTTP request was made correctly
        self.http_client.post.assert_awaited_once()
        call_args = self.http_client.post.call_args
        assert call_args[0][0] == "https://mdm.example.com/token"

        form_data = call_args[1]["data"]
        assert form_data == {
            "grant_type": "authorization_code",
            "code": "auth-code-123",
            "redirect_uri": "https://app.local/cb",
            "client_id": "client-456",
            "code_verifier": verifier,
        }
        assert session.pkce.code_challenge not in form_data.values()

        headers = call_args[1]["headers"]
        assert headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert headers["Accept"] == "application/json"

    async def test_minimal_response_uses_defaults(self, session):
        self.http_client.post.return_value = make_response(
            200, {"access_token": "access-token-xyz"}
        )

        token_response = await self.token_manager.exchange_code_for_token(
            "auth-code-123", session
        )

        assert token_response.token_type == "Bearer"
        assert token_response.expires_in is None
        assert token_response.refresh_token is None
        assert token_response.calculate_expires_at() is None

    async def test_expiry_is_exposed(self, session):
        self.http_client.post.return_value = make_response(
            200, {"access_token": "tok", "expires_in": 600}
        )

        token_response = await self.token_manager.exchange_code_for_token(
            "auth-code-123", session
        )

        assert token_response.calculate_expires_at(now=1000.0) == 1600.0

    async def test_session_discarded_after_success(self, session):
        self.http_client.post.return_value = make_response(200, {"access_token": "t"})

        await self.token_manager.exchange_code_for_token("auth-code-123", session)

        assert session.pkce.code_verifier.wiped
        assert session.state.wiped

    async def test_second_exchange_with_same_session_is_refused(self, session):
        self.http_client.post.return_value = make_response(200, {"access_token": "t"})
        await self.token_manager.exchange_code_for_token("auth-code-123", session)

        with pytest.raises(SessionConsumedError):
            await self.token_manager.exchange_code_for_token("auth-code-123", session)

        self.http_client.post.assert_awaited_once()

    async def test_configured_timeout_applies_to_request(self):
        config = OAuth2Config(
            client_id="client-456",
            redirect_uri="https://app.local/cb",
            server_url="https://mdm.example.com",
            timeout=5.0,
        )
        session = OAuth2FlowManager().prepare_session(config)
        self.http_client.post.return_value = make_response(200, {"access_token": "t"})

        await self.token_manager.exchange_code_for_token("auth-code-123", session)

        assert self.http_client.post.call_args[1]["timeout"] == 5.0


class TestTokenExchangeErrors:
    """Test error handling in token exchange."""

    def setup_method(self):
        self.http_client = AsyncMock()
        self.token_manager = OAuth2TokenManager(http_client=self.http_client)

    async def test_invalid_grant_error(self, session):
        # Arrange
        self.http_client.post.return_value = make_response(
            400,
            {
                "error": "invalid_grant",
                "error_description": "Authorization code has expired",
            },
        )

        # Act & Assert
        with pytest.raises(TokenExchangeError) as exc_info:
            await self.token_manager.exchange_code_for_token("expired-code", session)

        assert exc_info.value.status_code == 400
        assert exc_info.value.server_message == (
            "invalid_grant: Authorization code has expired"
        )
        assert session.pkce.code_verifier.wiped

    async def test_server_error_with_plain_body(self, session):
        self.http_client.post.return_value = make_response(
            500, None, text="Internal Server Error"
        )

        with pytest.raises(TokenExchangeError, match="HTTP 500: Internal Server Error"):
            await self.token_manager.exchange_code_for_token("code", session)

    async def test_success_status_with_non_json_body(self, session):
        self.http_client.post.return_value = make_response(200, None, text="<html>")

        with pytest.raises(TokenExchangeError, match="not a JSON object"):
            await self.token_manager.exchange_code_for_token("code", session)

    async def test_missing_access_token(self, session):
        self.http_client.post.return_value = make_response(
            200, {"token_type": "Bearer"}
        )

        with pytest.raises(InvalidResponseError, match="access_token"):
            await self.token_manager.exchange_code_for_token("code", session)

    async def test_malformed_fields(self, session):
        self.http_client.post.return_value = make_response(
            200, {"access_token": "tok", "expires_in": "soon"}
        )

        with pytest.raises(InvalidResponseError):
            await self.token_manager.exchange_code_for_token("code", session)

    async def test_network_error(self, session):
        self.http_client.post.side_effect = httpx.ConnectError("Connection refused")

        with pytest.raises(NetworkError, match="Connection refused"):
            await self.token_manager.exchange_code_for_token("code", session)

        assert session.pkce.code_verifier.wiped

    async def test_invalid_response_is_not_a_token_exchange_error(self, session):
        self.http_client.post.return_value = make_response(200, {})

        with pytest.raises(InvalidResponseError) as exc_info:
            await self.token_manager.exchange_code_for_token("code", session)

        assert not isinstance(exc_info.value, TokenExchangeError)


class TestWireFormat:
    """Token requests against an httpx mock transport."""

    async def test_form_encoded_body(self, session):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(
                200, json={"access_token": "tok", "token_type": "Bearer"}
            )

        verifier = session.pkce.code_verifier.reveal()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            token_manager = OAuth2TokenManager(http_client=client)
            await token_manager.exchange_code_for_token("ABC", session)

        request = captured[0]
        assert request.method == "POST"
        assert str(request.url) == "https://mdm.example.com/token"
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        body = parse_qs(request.content.decode())
        assert body["code_verifier"] == [verifier]
        assert body["code"] == ["ABC"]
        assert body["grant_type"] == ["authorization_code"]

    async def test_transport_failure(self, session):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            token_manager = OAuth2TokenManager(http_client=client)
            with pytest.raises(NetworkError):
                await token_manager.exchange_code_for_token("ABC", session)


class TestTokenRefresh:
    def setup_method(self):
        self.http_client = AsyncMock()
        self.token_manager = OAuth2TokenManager(http_client=self.http_client)

    async def test_successful_refresh(self, oauth_config):
        self.http_client.post.return_value = make_response(
            200, {"access_token": "new-access", "expires_in": 3600}
        )

        token_response = await self.token_manager.refresh_access_token(
            "refresh-token-abc", oauth_config
        )

        assert token_response.access_token == "new-access"
        form_data = self.http_client.post.call_args[1]["data"]
        assert form_data == {
            "grant_type": "refresh_token",
            "refresh_token": "refresh-token-abc",
            "client_id": "client-456",
        }
        assert self.http_client.post.call_args[1]["timeout"] == oauth_config.timeout

    async def test_refresh_rejected(self, oauth_config):
        self.http_client.post.return_value = make_response(
            400, {"error": "invalid_grant"}
        )

        with pytest.raises(TokenRefreshError, match="Token refresh failed: invalid_grant"):
            await self.token_manager.refresh_access_token("stale", oauth_config)


class TestLifecycle:
    async def test_close_leaves_shared_client_open(self):
        http_client = AsyncMock()
        token_manager = OAuth2TokenManager(http_client=http_client)

        await token_manager.close()

        http_client.aclose.assert_not_awaited()

    async def test_close_owned_client(self):
        token_manager = OAuth2TokenManager()

        await token_manager.close()

        assert token_manager._http_client.is_closed
