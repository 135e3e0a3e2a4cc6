"""Redirect interception for the embedded browser surface.

The redirect URI is usually not routable, so the browser must never load
it. Every navigation is classified before it happens: navigations inside
the provider's login pages are allowed, and the one that targets the
redirect URI is cancelled and parsed for the authorization result.
"""

from __future__ import annotations

import logging
from urllib.parse import SplitResult, parse_qs, urlsplit

from forgeauth.auth.models.flow import (
    AuthorizationCode,
    AuthorizationErrorResponse,
    Inconclusive,
    NavigationPolicy,
    RedirectMatchMode,
    RedirectOutcome,
)
from forgeauth.auth.services.security import redact_url

logger = logging.getLogger(__name__)

TRANSPORT_ERROR = "transport_error"
INVALID_RESPONSE = "invalid_response"

_DEFAULT_PORTS = {"http": 80, "https": 443}


def matches_redirect_uri(
    navigation_url: str,
    redirect_uri: str,
    match_mode: RedirectMatchMode = RedirectMatchMode.EXACT,
) -> bool:
    """Check whether a navigation targets the redirect URI.

    In EXACT mode scheme, host, port and path must be equal; query and
    fragment are ignored, as is a trailing slash on the path. PREFIX mode
    is a plain string prefix test.
    """
    if match_mode is RedirectMatchMode.PREFIX:
        return navigation_url.startswith(redirect_uri)

    try:
        return _match_key(urlsplit(navigation_url)) == _match_key(
            urlsplit(redirect_uri)
        )
    except ValueError:
        # Malformed port or IPv6 literal; cannot be our redirect URI
        return False


def _match_key(parts: SplitResult) -> tuple[str, str, int | None, str]:
    scheme = parts.scheme.lower()
    port = parts.port or _DEFAULT_PORTS.get(scheme)
    return scheme, parts.hostname or "", port, parts.path.rstrip("/")


def classify(
    navigation_url: str,
    expected_redirect_uri: str,
    match_mode: RedirectMatchMode = RedirectMatchMode.EXACT,
) -> RedirectOutcome:
    """Classify a single navigation attempt.

    Args:
        navigation_url: URL the browser is about to load
        expected_redirect_uri: Redirect URI registered for the attempt
        match_mode: How to compare the two

    Returns:
        Inconclusive if the navigation is unrelated to the redirect URI,
        otherwise the authorization code or error carried by the redirect
    """
    if not matches_redirect_uri(navigation_url, expected_redirect_uri, match_mode):
        return Inconclusive()

    parts = urlsplit(navigation_url)
    params = parse_qs(parts.query)
    if "code" not in params and "error" not in params:
        # Implicit-style providers put the response in the fragment
        params = parse_qs(parts.fragment)

    def get_single_param(key: str) -> str | None:
        values = params.get(key, [])
        return values[0] if values else None

    code = get_single_param("code")
    if code is not None:
        return AuthorizationCode(code=code, returned_state=get_single_param("state"))

    error = get_single_param("error")
    if error is not None:
        return AuthorizationErrorResponse(
            error_code=error, description=get_single_param("error_description")
        )

    return AuthorizationErrorResponse(error_code=INVALID_RESPONSE)


class RedirectInterceptor:
    """Decides navigation policy for one redirect URI.

    Bridges the browser surface's navigation callbacks to redirect outcomes.
    Holds no secrets; state validation is the orchestrator's job.
    """

    def __init__(
        self,
        redirect_uri: str,
        match_mode: RedirectMatchMode = RedirectMatchMode.EXACT,
    ):
        self.redirect_uri = redirect_uri
        self.match_mode = match_mode

    def decide(self, navigation_url: str) -> tuple[NavigationPolicy, RedirectOutcome]:
        """Classify a navigation and tell the browser whether to load it."""
        outcome = classify(navigation_url, self.redirect_uri, self.match_mode)
        if isinstance(outcome, Inconclusive):
            return NavigationPolicy.ALLOW, outcome

        logger.debug(f"Intercepted redirect navigation: {redact_url(navigation_url)}")
        return NavigationPolicy.CANCEL, outcome

    def navigation_failed(self, error: BaseException | str) -> AuthorizationErrorResponse:
        """Convert a browser load failure (DNS, TLS, ...) into an outcome."""
        description = str(error) or type(error).__name__
        logger.warning(f"Browser navigation failed: {description}")
        return AuthorizationErrorResponse(
            error_code=TRANSPORT_ERROR, description=description
        )
