"""Authorization request preparation service.

Turns a validated client configuration into a fresh authorization session:
new PKCE parameters, a new state token and the authorization URL that the
browser surface should load.
"""

from __future__ import annotations

import logging

from forgeauth.auth.models.config import OAuth2Config
from forgeauth.auth.models.errors import InvalidConfigurationError
from forgeauth.auth.models.flow import AuthorizationRequest, AuthorizationSession
from forgeauth.auth.models.security import SecretValue
from forgeauth.auth.primitives.pkce import PKCEManager

logger = logging.getLogger(__name__)


class OAuth2FlowManager:
    """Builds authorization sessions for the authorization code flow.

    Each call to ``prepare_session`` produces independent secrets; sessions
    are never shared between attempts.
    """

    def __init__(self, pkce_manager: PKCEManager | None = None):
        self._pkce_manager = pkce_manager or PKCEManager()

    def prepare_session(self, config: OAuth2Config) -> AuthorizationSession:
        """Start a new authorization attempt.

        Args:
            config: Validated client configuration

        Returns:
            AuthorizationSession holding the secrets and authorization URL

        Raises:
            InvalidConfigurationError: If config is not an OAuth2Config
        """
        if not isinstance(config, OAuth2Config):
            raise InvalidConfigurationError(
                f"Expected OAuth2Config, got {type(config).__name__}"
            )

        pkce_params, state = self._pkce_manager.generate()

        auth_request = AuthorizationRequest(
            authorization_endpoint=config.authorization_endpoint,
            client_id=config.client_id,
            redirect_uri=config.redirect_uri,
            code_challenge=pkce_params.code_challenge,
            code_challenge_method=pkce_params.code_challenge_method,
            state=state,
            scopes=config.scopes,
        )

        session = AuthorizationSession(
            state=SecretValue(state),
            pkce=pkce_params,
            client_id=config.client_id,
            redirect_uri=config.redirect_uri,
            scopes=config.scopes,
            server_url=config.server_url,
            authorization_url=auth_request.build_authorization_url(),
            token_endpoint=config.token_endpoint,
            timeout=config.timeout,
        )

        logger.info(
            f"Prepared authorization session for client {config.client_id} "
            f"at {config.server_host}"
        )
        return session
