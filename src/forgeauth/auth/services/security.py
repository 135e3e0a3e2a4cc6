"""Security utilities for the authorization flow.

State validation, log redaction for URLs that carry secrets, and a simple
per-server rate limiter for flow and token requests.
"""

from __future__ import annotations

import secrets
import threading
import time
from typing import Callable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from forgeauth.auth.models.errors import RateLimitExceededError, StateMismatchError

SENSITIVE_PARAMS = frozenset(
    {
        "code",
        "state",
        "code_verifier",
        "code_challenge",
        "access_token",
        "refresh_token",
        "id_token",
    }
)

REDACTED = "[REDACTED]"


def validate_state(expected: str, actual: str | None) -> None:
    """Validate state parameter matches expected value.

    Args:
        expected: State parameter from original authorization request
        actual: State parameter from the redirect, if any

    Raises:
        StateMismatchError: If the state is missing or does not match
    """
    if not actual:
        raise StateMismatchError("Redirect is missing the state parameter")
    if not secrets.compare_digest(expected.encode("ascii"), actual.encode("utf-8")):
        raise StateMismatchError("State parameter mismatch - possible CSRF attack")


def redact_url(url: str) -> str:
    """Mask the values of secret-bearing query and fragment parameters."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return REDACTED

    def scrub(component: str) -> str:
        if not component:
            return component
        pairs = parse_qsl(component, keep_blank_values=True)
        return urlencode(
            [(k, REDACTED if k in SENSITIVE_PARAMS else v) for k, v in pairs],
            safe="[]",
        )

    return urlunsplit(
        (
            parts.scheme,
            parts.netloc,
            parts.path,
            scrub(parts.query),
            scrub(parts.fragment),
        )
    )


class RateLimiter:
    """Fixed-window request counter keyed by an arbitrary identifier.

    Allows ``max_requests`` per key within ``window_seconds``; the window
    restarts on the first request after it has elapsed.
    """

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def check(self, key: str) -> None:
        """Count a request against ``key``.

        Raises:
            RateLimitExceededError: If the key is over its limit
        """
        now = self._clock()
        with self._lock:
            count, window_start = self._windows.get(key, (0, now))
            if now - window_start > self.window_seconds:
                count, window_start = 0, now

            if count >= self.max_requests:
                retry_in = self.window_seconds - (now - window_start)
                raise RateLimitExceededError(
                    f"Too many requests for {key}; retry in {retry_in:.0f}s"
                )

            self._windows[key] = (count + 1, window_start)

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)
