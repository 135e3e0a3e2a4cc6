"""Exception hierarchy for the OAuth 2.0 authorization code flow.

Every failure of an authorization attempt surfaces as exactly one of these
types so the host can render a precise message. None of them are retried
automatically; the only recovery path is starting a new attempt.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base exception for all authorization flow errors."""

    pass


class InvalidConfigurationError(AuthError):
    """Raised when client id, redirect URI, server URL or scopes are invalid.

    Always raised before any network or browser activity takes place.
    """

    pass


class RateLimitExceededError(AuthError):
    """Raised when too many flows or token calls target the same server."""

    pass


class AuthorizationDeniedError(AuthError):
    """Raised when the user or the provider rejected the authorization."""

    def __init__(self, description: str | None = None):
        self.description = description
        message = "Authorization denied"
        if description:
            message = f"{message}: {description}"
        super().__init__(message)


class ProviderError(AuthError):
    """Raised when the redirect carried an OAuth error other than a denial.

    Navigation failures reported by the browser surface also end up here,
    with the code ``transport_error``.
    """

    def __init__(self, code: str, description: str | None = None):
        self.code = code
        self.description = description
        message = f"Authorization server returned {code}"
        if description:
            message = f"{message} ({description})"
        super().__init__(message)


class StateMismatchError(AuthError):
    """Raised when the returned state does not match the one we sent.

    Indicates a possible CSRF attack or an intercepted redirect. The attempt
    is aborted and no token is ever requested.
    """

    pass


class NetworkError(AuthError):
    """Raised when the token endpoint could not be reached."""

    pass


class TokenExchangeError(AuthError):
    """Raised when the token endpoint rejected the authorization code."""

    operation = "Token exchange"

    def __init__(self, server_message: str, status_code: int | None = None):
        self.server_message = server_message
        self.status_code = status_code
        super().__init__(f"{self.operation} failed: {server_message}")


class TokenRefreshError(TokenExchangeError):
    """Raised when the token endpoint rejected a refresh token."""

    operation = "Token refresh"


class InvalidResponseError(AuthError):
    """Raised when a successful token response is malformed."""

    pass


class AuthorizationCancelledError(AuthError):
    """Raised when the user dismissed the authorization window."""

    pass


class FlowInProgressError(AuthError):
    """Raised when start() is called on a flow that already left IDLE."""

    pass


class SessionConsumedError(AuthError):
    """Raised when a session's verifier is requested a second time."""

    pass
