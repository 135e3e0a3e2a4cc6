"""Single-attempt authorization code flow state machine.

Drives one authorization attempt from IDLE to a terminal state:

    IDLE -> PREPARING -> AWAITING_REDIRECT -> EXCHANGING_TOKEN
         -> SUCCEEDED | FAILED | CANCELLED

Browser navigations, token exchange completion and cancellation are all
delivered as events on an asyncio queue, so the flow never blocks the host
and never mutates UI state. An instance handles exactly one attempt.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable

from forgeauth.auth.models.browser import BrowserSurface
from forgeauth.auth.models.config import OAuth2Config
from forgeauth.auth.models.errors import (
    AuthError,
    AuthorizationCancelledError,
    AuthorizationDeniedError,
    FlowInProgressError,
    InvalidConfigurationError,
    ProviderError,
    StateMismatchError,
    TokenExchangeError,
)
from forgeauth.auth.models.flow import (
    AuthorizationCode,
    AuthorizationErrorResponse,
    AuthorizationSession,
    FlowState,
    Inconclusive,
    NavigationPolicy,
)
from forgeauth.auth.models.tokens import TokenResponse
from forgeauth.auth.primitives.redirect import RedirectInterceptor
from forgeauth.auth.services.flow import OAuth2FlowManager
from forgeauth.auth.services.security import RateLimiter, validate_state
from forgeauth.auth.services.tokens import OAuth2TokenManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _RedirectReceived:
    outcome: AuthorizationCode | AuthorizationErrorResponse


@dataclass(frozen=True)
class _ExchangeFinished:
    token_response: TokenResponse | None = None
    error: AuthError | None = None


@dataclass(frozen=True)
class _Wakeup:
    """Unblocks the event loop after a synchronous terminal transition."""


_FlowEvent = _RedirectReceived | _ExchangeFinished | _Wakeup


class AuthorizationFlow:
    """Runs one OAuth 2.0 authorization code attempt with PKCE.

    Usage:
        flow = AuthorizationFlow(browser, token_manager)
        # browser navigation callback -> flow.handle_navigation(url)
        # browser load failure callback -> flow.handle_navigation_failure(exc)
        # window closed -> flow.cancel()
        token_response = await flow.start(config)

    All methods must be called from the event loop thread.
    """

    def __init__(
        self,
        browser: BrowserSurface,
        token_manager: OAuth2TokenManager,
        flow_manager: OAuth2FlowManager | None = None,
        rate_limiter: RateLimiter | None = None,
        on_authorization_url: Callable[[str], None] | None = None,
        on_state_change: Callable[[FlowState], None] | None = None,
    ):
        self._browser = browser
        self._token_manager = token_manager
        self._flow_manager = flow_manager or OAuth2FlowManager()
        self._rate_limiter = rate_limiter
        self._on_authorization_url = on_authorization_url
        self._on_state_change = on_state_change

        self._state = FlowState.IDLE
        self._events: asyncio.Queue[_FlowEvent] = asyncio.Queue()
        self._config: OAuth2Config | None = None
        self._session: AuthorizationSession | None = None
        self._interceptor: RedirectInterceptor | None = None
        self._redirect_received = False
        self._exchange_task: asyncio.Task[None] | None = None
        self._authorization_url: str | None = None

        self.result: TokenResponse | None = None
        self.error: AuthError | None = None

    # ================================
    # Inspection
    # ================================

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def authorization_url(self) -> str | None:
        """URL handed to the browser surface, once the flow is prepared."""
        return self._authorization_url

    # ================================
    # Entry points
    # ================================

    async def start(self, config: OAuth2Config | Mapping[str, Any]) -> TokenResponse:
        """Run the authorization attempt to completion.

        Args:
            config: Client configuration, or raw values to validate

        Returns:
            TokenResponse from the token endpoint

        Raises:
            FlowInProgressError: If this flow has already been started
            InvalidConfigurationError: If the configuration is invalid
            AuthorizationCancelledError: If cancel() was called
            AuthError: Any other failure of the attempt

        If the awaiting task is cancelled, or a host callback raises, the
        attempt still ends in a terminal state before the exception leaves.
        """
        if self._state is FlowState.CANCELLED and self.error is not None:
            raise self.error
        if self._state is not FlowState.IDLE:
            raise FlowInProgressError(
                f"Authorization flow is {self._state.value}; create a new flow "
                "for another attempt"
            )

        try:
            return await self._attempt(config)
        except BaseException as e:
            self._abort(e)
            raise

    async def _attempt(self, config: OAuth2Config | Mapping[str, Any]) -> TokenResponse:
        self._transition(FlowState.PREPARING)
        self._config = self._coerce_config(config)
        if self._rate_limiter is not None:
            self._rate_limiter.check(f"oauth_flow_{self._config.server_host}")
        self._session = self._flow_manager.prepare_session(self._config)

        self._interceptor = RedirectInterceptor(
            self._config.redirect_uri, self._config.redirect_match_mode
        )
        self._authorization_url = self._session.authorization_url
        self._transition(FlowState.AWAITING_REDIRECT)

        if self._on_authorization_url is not None:
            self._on_authorization_url(self._authorization_url)
        try:
            await self._browser.load(self._authorization_url)
        except Exception as e:
            self.handle_navigation_failure(e)

        return await self._run()

    def handle_navigation(self, url: str) -> NavigationPolicy:
        """Navigation-decision callback for the browser surface.

        Returns CANCEL for any navigation targeting the redirect URI, even
        after the flow has finished, so the browser never loads it.
        """
        if self._interceptor is None:
            return NavigationPolicy.ALLOW

        policy, outcome = self._interceptor.decide(url)
        if isinstance(outcome, Inconclusive):
            return policy

        if self._state is FlowState.AWAITING_REDIRECT and not self._redirect_received:
            self._redirect_received = True
            self._events.put_nowait(_RedirectReceived(outcome))
        else:
            logger.debug(f"Ignoring redirect in state {self._state.value}")
        return policy

    def handle_navigation_failure(self, error: BaseException | str) -> None:
        """Load-failure callback for the browser surface."""
        if self._interceptor is None:
            return
        if self._state is not FlowState.AWAITING_REDIRECT or self._redirect_received:
            logger.debug(f"Ignoring navigation failure in state {self._state.value}")
            return

        self._redirect_received = True
        self._events.put_nowait(
            _RedirectReceived(self._interceptor.navigation_failed(error))
        )

    def cancel(self) -> None:
        """Abandon the attempt, e.g. because the user closed the window.

        Takes effect immediately. A token exchange that is already in flight
        is left to complete and its result is discarded.
        """
        if self._state.is_terminal:
            return
        self._finish(
            FlowState.CANCELLED,
            error=AuthorizationCancelledError("Authorization cancelled by user"),
        )
        self._events.put_nowait(_Wakeup())

    # ================================
    # Event loop
    # ================================

    async def _run(self) -> TokenResponse:
        while not self._state.is_terminal:
            event = await self._events.get()
            self._dispatch(event)

        if self._state is FlowState.SUCCEEDED and self.result is not None:
            return self.result
        assert self.error is not None
        raise self.error

    def _dispatch(self, event: _FlowEvent) -> None:
        if self._state.is_terminal:
            return

        if isinstance(event, _RedirectReceived):
            if self._state is FlowState.AWAITING_REDIRECT:
                self._handle_redirect(event.outcome)
                return
        elif isinstance(event, _ExchangeFinished):
            if self._state is FlowState.EXCHANGING_TOKEN:
                if event.error is not None:
                    self._finish_failed(event.error)
                elif event.token_response is not None:
                    self._finish(FlowState.SUCCEEDED, result=event.token_response)
                return

        logger.debug(f"Ignoring {type(event).__name__} in state {self._state.value}")

    def _handle_redirect(
        self, outcome: AuthorizationCode | AuthorizationErrorResponse
    ) -> None:
        assert self._session is not None and self._config is not None

        if isinstance(outcome, AuthorizationErrorResponse):
            if outcome.is_denial:
                self._finish_failed(AuthorizationDeniedError(outcome.description))
            else:
                self._finish_failed(
                    ProviderError(outcome.error_code, outcome.description)
                )
            return

        try:
            validate_state(self._session.state.reveal(), outcome.returned_state)
        except StateMismatchError as e:
            logger.warning("Authorization redirect failed state validation")
            self._finish_failed(e)
            return

        if self._rate_limiter is not None:
            try:
                self._rate_limiter.check(f"oauth_token_{self._config.server_host}")
            except AuthError as e:
                self._finish_failed(e)
                return

        self._transition(FlowState.EXCHANGING_TOKEN)
        self._exchange_task = asyncio.create_task(
            self._exchange(outcome.code, self._session),
            name="oauth_token_exchange",
        )
        self._exchange_task.add_done_callback(self._on_exchange_done)

    async def _exchange(self, code: str, session: AuthorizationSession) -> None:
        """Run the token exchange and post its outcome as an event."""
        try:
            token_response = await self._token_manager.exchange_code_for_token(
                code, session
            )
        except AuthError as e:
            self._events.put_nowait(_ExchangeFinished(error=e))
        except Exception as e:
            error = TokenExchangeError(f"Unexpected error during token exchange: {e}")
            error.__cause__ = e
            self._events.put_nowait(_ExchangeFinished(error=error))
        else:
            self._events.put_nowait(_ExchangeFinished(token_response=token_response))

    def _on_exchange_done(self, task: asyncio.Task[None]) -> None:
        self._exchange_task = None
        interrupted = task.cancelled()
        exc = None if interrupted else task.exception()

        if self._state is FlowState.CANCELLED:
            if exc is not None:
                logger.debug(
                    f"Discarding token exchange failure after cancellation: {exc!r}"
                )
            else:
                logger.debug("Discarding token exchange result after cancellation")
            return

        # _exchange posts its own outcome unless it never got to finish
        if interrupted or exc is not None:
            error = TokenExchangeError("Token exchange was interrupted")
            error.__cause__ = exc
            self._events.put_nowait(_ExchangeFinished(error=error))

    # ================================
    # Transitions
    # ================================

    def _coerce_config(self, config: OAuth2Config | Mapping[str, Any]) -> OAuth2Config:
        if isinstance(config, OAuth2Config):
            return config
        if isinstance(config, Mapping):
            return OAuth2Config.from_values(**config)
        raise InvalidConfigurationError(
            f"Expected OAuth2Config or a mapping, got {type(config).__name__}"
        )

    def _transition(self, new_state: FlowState) -> None:
        logger.info(f"Authorization flow: {self._state.value} -> {new_state.value}")
        self._state = new_state
        if self._on_state_change is not None:
            self._on_state_change(new_state)

    def _abort(self, exc: BaseException) -> None:
        """Force a terminal state when start() is left by an exception."""
        if self._state.is_terminal:
            return
        if isinstance(exc, asyncio.CancelledError):
            logger.info("Authorization task cancelled; abandoning attempt")
            self._finish(
                FlowState.CANCELLED,
                error=AuthorizationCancelledError("Authorization task was cancelled"),
            )
        elif isinstance(exc, AuthError):
            self._finish_failed(exc)
        else:
            error = AuthError(f"Unexpected error during authorization: {exc!r}")
            error.__cause__ = exc
            self._finish_failed(error)

    def _finish_failed(self, error: AuthError) -> None:
        logger.warning(f"Authorization flow failed: {error}")
        self._finish(FlowState.FAILED, error=error)

    def _finish(
        self,
        state: FlowState,
        result: TokenResponse | None = None,
        error: AuthError | None = None,
    ) -> None:
        """Enter a terminal state and release the session's secrets."""
        self.result = result
        self.error = error
        if self._session is not None:
            self._session.discard()
        self._transition(state)
