"""PKCE (Proof Key for Code Exchange) generation, RFC 7636.

Produces the code verifier, its S256 challenge and the anti-CSRF state
token for one authorization attempt. Everything is drawn from the
``secrets`` module; a failure to obtain randomness is not recoverable and
propagates unchanged.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

from forgeauth.auth.models.security import PKCEParameters, SecretValue

VERIFIER_BYTES = 64  # 86 base64url characters
STATE_BYTES = 32  # 43 base64url characters


def _base64url(data: bytes) -> str:
    """Base64url-encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_state() -> str:
    """Generate a cryptographically secure state parameter.

    Independent from the verifier so that neither can be derived from the
    other.
    """
    return _base64url(secrets.token_bytes(STATE_BYTES))


class PKCEManager:
    """Generates PKCE parameters for authorization attempts.

    This implementation follows RFC 7636 requirements:
    - Uses S256 code challenge method (SHA256 + base64url)
    - Generates verifiers from 512 bits of CSPRNG output
    - Generates a fresh, independent state per attempt
    """

    def generate(self) -> tuple[PKCEParameters, str]:
        """Generate new PKCE parameters and a state token.

        Returns:
            Tuple of (pkce_parameters, state)
        """
        code_verifier = self._generate_code_verifier()
        code_challenge = self.compute_challenge(code_verifier)

        params = PKCEParameters(
            code_verifier=SecretValue(code_verifier),
            code_challenge=code_challenge,
            code_challenge_method="S256",
        )
        return params, generate_state()

    @staticmethod
    def compute_challenge(code_verifier: str) -> str:
        """Derive the S256 code challenge from a verifier.

        RFC 7636 Section 4.2: BASE64URL-ENCODE(SHA256(ASCII(code_verifier)))
        """
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return _base64url(digest)

    def _generate_code_verifier(self) -> str:
        """Generate a code verifier.

        The base64url alphabet is a subset of the RFC 7636 unreserved
        characters: [A-Z] / [a-z] / [0-9] / "-" / "_"
        """
        return _base64url(secrets.token_bytes(VERIFIER_BYTES))
