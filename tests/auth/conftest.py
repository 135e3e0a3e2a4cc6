import asyncio
from typing import Callable
from unittest.mock import AsyncMock

import pytest

from forgeauth.auth.models.config import OAuth2Config
from forgeauth.auth.models.tokens import TokenResponse
from forgeauth.auth.services.tokens import OAuth2TokenManager

REDIRECT_URI = "https://app.local/cb"
SERVER_URL = "https://mdm.example.com"


class FakeBrowser:
    """Records loaded URLs in place of an embedded browser surface."""

    def __init__(self, on_load: Callable[[str], None] | None = None):
        self.loaded_urls: list[str] = []
        self.loaded = asyncio.Event()
        self.on_load = on_load
        self.load_error: Exception | None = None

    async def load(self, url: str) -> None:
        self.loaded_urls.append(url)
        self.loaded.set()
        if self.load_error is not None:
            raise self.load_error
        if self.on_load is not None:
            self.on_load(url)


@pytest.fixture
def config() -> OAuth2Config:
    return OAuth2Config(
        client_id="macforge-desktop",
        redirect_uri=REDIRECT_URI,
        server_url=SERVER_URL,
        scopes=["read", "write"],
    )


@pytest.fixture
def browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
def token_response() -> TokenResponse:
    return TokenResponse(
        access_token="access-token-xyz",
        token_type="Bearer",
        expires_in=3600,
        refresh_token="refresh-token-abc",
        scope="read write",
    )


@pytest.fixture
def token_manager(token_response) -> AsyncMock:
    """Token manager double that succeeds by default."""
    manager = AsyncMock(spec=OAuth2TokenManager)
    manager.exchange_code_for_token.return_value = token_response
    return manager


async def yield_to_event_loop(seconds: float = 0.01) -> None:
    """Let the event loop process pending tasks and callbacks."""
    await asyncio.sleep(seconds)


@pytest.fixture
def yield_loop():
    """Helper to yield to event loop in tests."""
    return yield_to_event_loop


@pytest.fixture
def browser_factory():
    """Build FakeBrowser instances, e.g. with an on_load hook."""
    return FakeBrowser
