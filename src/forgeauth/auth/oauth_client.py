"""OAuth 2.0 client facade for management-server authentication.

Creates a fresh AuthorizationFlow for every attempt while sharing the HTTP
connection pool and rate limiter between attempts.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Callable

import httpx

from forgeauth.auth.models.browser import BrowserSurface
from forgeauth.auth.models.config import OAuth2Config
from forgeauth.auth.models.errors import FlowInProgressError
from forgeauth.auth.models.flow import FlowState, NavigationPolicy
from forgeauth.auth.models.tokens import TokenResponse
from forgeauth.auth.orchestrator import AuthorizationFlow
from forgeauth.auth.services.flow import OAuth2FlowManager
from forgeauth.auth.services.security import RateLimiter
from forgeauth.auth.services.tokens import OAuth2TokenManager

logger = logging.getLogger(__name__)


class OAuth2Client:
    """Entry point for the host application.

    At most one attempt runs at a time. A failed, denied or cancelled
    attempt is never retried; call ``authenticate`` again to start over
    with new PKCE parameters and a new state.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        """Initialize OAuth client.

        Args:
            timeout: HTTP request timeout
            http_client: Optional shared HTTP client
            rate_limiter: Optional limiter shared with other clients
        """
        self.token_manager = OAuth2TokenManager(timeout=timeout, http_client=http_client)
        self.flow_manager = OAuth2FlowManager()
        self.rate_limiter = rate_limiter or RateLimiter()
        self._active_flow: AuthorizationFlow | None = None

    @property
    def active_flow(self) -> AuthorizationFlow | None:
        """The most recent attempt, finished or not."""
        return self._active_flow

    def create_flow(
        self,
        browser: BrowserSurface,
        on_authorization_url: Callable[[str], None] | None = None,
        on_state_change: Callable[[FlowState], None] | None = None,
    ) -> AuthorizationFlow:
        """Create a new single-use flow bound to this client's services.

        Raises:
            FlowInProgressError: If the previous attempt has not finished
        """
        if self._active_flow is not None and not self._active_flow.state.is_terminal:
            raise FlowInProgressError("Another authorization attempt is in progress")

        self._active_flow = AuthorizationFlow(
            browser,
            self.token_manager,
            flow_manager=self.flow_manager,
            rate_limiter=self.rate_limiter,
            on_authorization_url=on_authorization_url,
            on_state_change=on_state_change,
        )
        return self._active_flow

    async def authenticate(
        self,
        config: OAuth2Config | Mapping[str, Any],
        browser: BrowserSurface,
        on_authorization_url: Callable[[str], None] | None = None,
    ) -> TokenResponse:
        """Authenticate against a management server.

        Returns:
            TokenResponse for the caller to store

        Raises:
            AuthError: If the attempt fails for any reason
        """
        flow = self.create_flow(browser, on_authorization_url=on_authorization_url)
        return await flow.start(config)

    async def start(
        self,
        client_id: str,
        redirect_uri: str,
        server_url: str,
        browser: BrowserSurface,
        scopes: Sequence[str] = ("read", "write"),
        on_authorization_url: Callable[[str], None] | None = None,
    ) -> TokenResponse:
        """Convenience wrapper taking the connection settings directly."""
        values = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "server_url": server_url,
            "scopes": tuple(scopes),
        }
        return await self.authenticate(values, browser, on_authorization_url)

    def handle_navigation(self, url: str) -> NavigationPolicy:
        """Forward a navigation decision to the current attempt."""
        if self._active_flow is None:
            return NavigationPolicy.ALLOW
        return self._active_flow.handle_navigation(url)

    def handle_navigation_failure(self, error: BaseException | str) -> None:
        if self._active_flow is not None:
            self._active_flow.handle_navigation_failure(error)

    def cancel(self) -> None:
        """Cancel the current attempt, if any."""
        if self._active_flow is not None:
            self._active_flow.cancel()

    async def refresh_access_token(
        self, refresh_token: str, config: OAuth2Config
    ) -> TokenResponse:
        """Exchange a refresh token for a new access token.

        Raises:
            RateLimitExceededError: If the server was hit too often
            NetworkError, TokenRefreshError, InvalidResponseError
        """
        self.rate_limiter.check(f"oauth_refresh_{config.server_host}")
        logger.info(f"Refreshing access token for {config.server_host}")
        return await self.token_manager.refresh_access_token(refresh_token, config)

    async def close(self) -> None:
        """Cancel any running attempt and close HTTP resources."""
        self.cancel()
        await self.token_manager.close()
