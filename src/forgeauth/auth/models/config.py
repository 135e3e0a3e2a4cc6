"""Client configuration for the authorization code flow.

Validates everything the flow needs up front so that a bad configuration
fails before any browser or network activity.
"""

from __future__ import annotations

import re
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from forgeauth.auth.models.errors import InvalidConfigurationError
from forgeauth.auth.models.flow import RedirectMatchMode

MAX_URL_LENGTH = 2048
LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

_CLIENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_WHITESPACE = re.compile(r"\s")


class OAuth2Config(BaseModel):
    """Connection settings for one management server."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    redirect_uri: str
    server_url: str
    scopes: tuple[str, ...] = ("read", "write")

    # Vendor layouts differ, e.g. "api/oauth/authorize"
    authorization_path: str = "authorize"
    token_path: str = "token"

    redirect_match_mode: RedirectMatchMode = RedirectMatchMode.EXACT
    timeout: float = Field(default=30.0, gt=0)

    @field_validator("client_id")
    @classmethod
    def validate_client_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("client_id must not be empty")
        if not _CLIENT_ID_PATTERN.match(v):
            raise ValueError(
                "client_id must be at most 128 letters, digits, '.', '-' or '_'"
            )
        return v

    @field_validator("server_url")
    @classmethod
    def validate_server_url(cls, v: str) -> str:
        """Normalise and validate the management server URL.

        A missing scheme defaults to https. Plain http is only accepted for
        loopback hosts.
        """
        v = v.strip()
        if not v:
            raise ValueError("server_url must not be empty")
        if len(v) > MAX_URL_LENGTH:
            raise ValueError(f"server_url exceeds {MAX_URL_LENGTH} characters")
        if _WHITESPACE.search(v):
            raise ValueError("server_url must not contain whitespace")

        if "://" not in v:
            v = f"https://{v}"

        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https"):
            raise ValueError(f"server_url must be an http(s) URL: {v}")
        host = parsed.hostname
        if not host:
            raise ValueError(f"server_url has no host: {v}")
        if ".." in host:
            raise ValueError(f"server_url host looks malformed: {host}")
        _ = parsed.port  # raises ValueError on a malformed port
        if parsed.scheme != "https" and host not in LOOPBACK_HOSTS:
            raise ValueError(f"server_url must use HTTPS: {v}")
        if parsed.query or parsed.fragment:
            raise ValueError("server_url must not carry a query or fragment")

        return v.rstrip("/")

    @field_validator("redirect_uri")
    @classmethod
    def validate_redirect_uri(cls, v: str) -> str:
        """Require an absolute URI. Custom app schemes are allowed."""
        v = v.strip()
        if not v:
            raise ValueError("redirect_uri must not be empty")
        if len(v) > MAX_URL_LENGTH:
            raise ValueError(f"redirect_uri exceeds {MAX_URL_LENGTH} characters")
        if _WHITESPACE.search(v):
            raise ValueError("redirect_uri must not contain whitespace")

        parsed = urlparse(v)
        if not parsed.scheme:
            raise ValueError(f"redirect_uri must be an absolute URI: {v}")
        if parsed.scheme in ("http", "https") and not parsed.hostname:
            raise ValueError(f"redirect_uri has no host: {v}")
        if not (parsed.netloc or parsed.path):
            raise ValueError(f"redirect_uri is incomplete: {v}")
        if parsed.fragment:
            raise ValueError("redirect_uri must not contain a fragment")
        return v

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Drop duplicates while keeping the caller's order."""
        seen: dict[str, None] = {}
        for scope in v:
            if not scope or _WHITESPACE.search(scope):
                raise ValueError(f"Invalid scope: {scope!r}")
            seen.setdefault(scope, None)
        return tuple(seen)

    @field_validator("authorization_path", "token_path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        v = v.strip().strip("/")
        if not v:
            raise ValueError("endpoint path must not be empty")
        return v

    @property
    def authorization_endpoint(self) -> str:
        return f"{self.server_url}/{self.authorization_path}"

    @property
    def token_endpoint(self) -> str:
        return f"{self.server_url}/{self.token_path}"

    @property
    def server_host(self) -> str:
        return urlparse(self.server_url).hostname or "unknown"

    @classmethod
    def from_values(cls, **values) -> OAuth2Config:
        """Build a config, reporting validation failures as auth errors.

        Raises:
            InvalidConfigurationError: If any value is missing or invalid
        """
        try:
            return cls(**values)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
            raise InvalidConfigurationError(
                f"Invalid OAuth configuration: {details}"
            ) from e
