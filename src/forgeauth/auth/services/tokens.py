"""Token endpoint client for the authorization code flow.

Implements the RFC 6749 token endpoint interactions with PKCE (RFC 7636):
exchanging an authorization code for tokens, and refreshing an access token.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from forgeauth.auth.models.config import OAuth2Config
from forgeauth.auth.models.errors import (
    InvalidResponseError,
    NetworkError,
    TokenExchangeError,
    TokenRefreshError,
)
from forgeauth.auth.models.flow import AuthorizationSession
from forgeauth.auth.models.tokens import (
    RefreshTokenRequest,
    TokenRequest,
    TokenResponse,
)

logger = logging.getLogger(__name__)

_FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}

_MAX_ERROR_BODY = 200


class OAuth2TokenManager:
    """Manages token exchange and refresh operations.

    Handles the token endpoint interactions including:
    - Authorization code to access token exchange (RFC 6749 Section 4.1.3)
    - Access token refresh (RFC 6749 Section 6)
    - PKCE code verification (RFC 7636)

    Uses application/x-www-form-urlencoded encoding as required by RFC 6749.
    No request is ever retried.
    """

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        """Initialize the token manager.

        Args:
            timeout: Default timeout for a privately created HTTP client
            http_client: Optional client to use instead of a private one
        """
        self.timeout = timeout
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def exchange_code_for_token(
        self, code: str, session: AuthorizationSession
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        The session's verifier is presented exactly once; the session is
        discarded afterwards whatever the outcome.

        Args:
            code: Authorization code from the redirect
            session: Session the code was issued for

        Returns:
            TokenResponse: Parsed successful response

        Raises:
            SessionConsumedError: If the session was already used
            NetworkError: If the token endpoint could not be reached
            TokenExchangeError: On a non-2xx status or malformed body
            InvalidResponseError: If the success response lacks access_token
        """
        try:
            token_request = TokenRequest(
                token_endpoint=session.token_endpoint,
                code=code,
                redirect_uri=session.redirect_uri,
                client_id=session.client_id,
                code_verifier=session.consume_verifier(),
            )

            logger.debug(
                f"Exchanging authorization code at {token_request.token_endpoint} "
                f"for client {token_request.client_id}"
            )

            response = await self._post(
                token_request.token_endpoint,
                token_request.to_form_data(),
                "token exchange",
                session.timeout,
            )
        finally:
            session.discard()

        return self._parse_token_response(response, TokenExchangeError)

    async def refresh_access_token(
        self, refresh_token: str, config: OAuth2Config
    ) -> TokenResponse:
        """Refresh an access token using a refresh token.

        Implements RFC 6749 Section 6 - Refreshing an Access Token.

        Raises:
            NetworkError: If the token endpoint could not be reached
            TokenRefreshError: On a non-2xx status or malformed body
            InvalidResponseError: If the success response lacks access_token
        """
        refresh_request = RefreshTokenRequest(
            token_endpoint=config.token_endpoint,
            refresh_token=refresh_token,
            client_id=config.client_id,
        )

        logger.debug(f"Refreshing access token at {refresh_request.token_endpoint}")

        response = await self._post(
            refresh_request.token_endpoint,
            refresh_request.to_form_data(),
            "token refresh",
            config.timeout,
        )
        return self._parse_token_response(response, TokenRefreshError)

    async def _post(
        self, url: str, form_data: dict[str, str], operation: str, timeout: float
    ) -> httpx.Response:
        try:
            return await self._http_client.post(
                url, data=form_data, headers=_FORM_HEADERS, timeout=timeout
            )
        except httpx.HTTPError as e:
            logger.warning(f"HTTP error during {operation}: {e}")
            raise NetworkError(f"HTTP error during {operation}: {e}") from e

    def _parse_token_response(
        self,
        response: httpx.Response,
        error_cls: type[TokenExchangeError],
    ) -> TokenResponse:
        """Parse a token endpoint response.

        Args:
            response: HTTP response from token endpoint
            error_cls: Error raised for rejected or unreadable responses

        Returns:
            TokenResponse for a 2xx JSON body carrying an access token
        """
        status = response.status_code
        try:
            response_data: Any = response.json()
        except ValueError:
            response_data = None

        if not 200 <= status < 300:
            message = self._describe_error(status, response_data, response.text)
            logger.warning(f"{error_cls.operation} failed with {status}: {message}")
            raise error_cls(message, status_code=status)

        if not isinstance(response_data, dict):
            raise error_cls(
                f"HTTP {status}: response body is not a JSON object",
                status_code=status,
            )

        if "access_token" not in response_data:
            raise InvalidResponseError("Token response missing required access_token")

        try:
            token_response = TokenResponse(**response_data)
        except ValidationError as e:
            raise InvalidResponseError(f"Invalid token response format: {e}") from e

        logger.info(f"{error_cls.operation} successful")
        return token_response

    def _describe_error(self, status: int, data: Any, body: str) -> str:
        """Prefer the RFC 6749 Section 5.2 error fields over the raw body."""
        if isinstance(data, dict) and data.get("error"):
            description = data.get("error_description")
            if description:
                return f"{data['error']}: {description}"
            return str(data["error"])
        body = (body or "").strip()
        if body:
            return f"HTTP {status}: {body[:_MAX_ERROR_BODY]}"
        return f"HTTP {status}"

    async def close(self) -> None:
        """Close the HTTP client if this manager created it."""
        if self._owns_http_client:
            await self._http_client.aclose()
