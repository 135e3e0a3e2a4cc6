"""Authorization flow models for the OAuth 2.0 authorization code flow.

Contains the authorization request, the per-attempt session, the outcomes
of classifying a browser navigation, and the flow's state enum.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import quote, urlencode

from forgeauth.auth.models.errors import SessionConsumedError
from forgeauth.auth.models.security import PKCEParameters, SecretValue


class FlowState(Enum):
    """Lifecycle of a single authorization attempt."""

    IDLE = "idle"
    PREPARING = "preparing"
    AWAITING_REDIRECT = "awaiting_redirect"
    EXCHANGING_TOKEN = "exchanging_token"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (FlowState.SUCCEEDED, FlowState.FAILED, FlowState.CANCELLED)


class NavigationPolicy(Enum):
    """Decision returned to the browser surface for a pending navigation."""

    ALLOW = "allow"
    CANCEL = "cancel"


class RedirectMatchMode(str, Enum):
    """How a navigation target is compared against the redirect URI."""

    EXACT = "exact"  # scheme + host + port + path, query and fragment ignored
    PREFIX = "prefix"  # plain string prefix, legacy behaviour


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters for the OAuth 2.0 flow."""

    authorization_endpoint: str
    client_id: str
    redirect_uri: str
    code_challenge: str
    state: str = field(repr=False)
    code_challenge_method: str = "S256"
    scopes: tuple[str, ...] = ()

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL.

        Spaces are encoded as %20 so the space-joined scope list survives
        servers that do not treat '+' as a space.
        """
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "state": self.state,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
        }

        if not self.scopes:
            del params["scope"]

        return f"{self.authorization_endpoint}?{urlencode(params, quote_via=quote)}"


@dataclass
class AuthorizationSession:
    """Everything needed to finish one authorization attempt.

    The verifier can be handed out exactly once. After ``discard()`` all
    secrets are zeroed and the session cannot be used again.
    """

    state: SecretValue = field(repr=False)
    pkce: PKCEParameters = field(repr=False)
    client_id: str
    redirect_uri: str
    scopes: tuple[str, ...]
    server_url: str
    authorization_url: str = field(repr=False)
    token_endpoint: str
    timeout: float = 30.0
    _consumed: bool = field(default=False, init=False, repr=False)
    _discarded: bool = field(default=False, init=False, repr=False)

    @property
    def is_active(self) -> bool:
        return not (self._consumed or self._discarded)

    def consume_verifier(self) -> str:
        """Return the code verifier and mark the session as consumed.

        Raises:
            SessionConsumedError: If the verifier was already handed out or
                the session has been discarded
        """
        if not self.is_active:
            raise SessionConsumedError(
                "Authorization session already used; start a new attempt"
            )
        self._consumed = True
        return self.pkce.code_verifier.reveal()

    def discard(self) -> None:
        """Zero the session secrets. Safe to call multiple times."""
        self.pkce.wipe()
        self.state.wipe()
        self._discarded = True


@dataclass(frozen=True)
class AuthorizationCode:
    """The redirect carried an authorization code."""

    code: str = field(repr=False)
    returned_state: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class AuthorizationErrorResponse:
    """The redirect carried an OAuth error, or the navigation itself failed."""

    error_code: str
    description: str | None = None

    @property
    def is_denial(self) -> bool:
        return self.error_code == "access_denied"


@dataclass(frozen=True)
class Inconclusive:
    """The navigation does not target the redirect URI."""


RedirectOutcome = AuthorizationCode | AuthorizationErrorResponse | Inconclusive
