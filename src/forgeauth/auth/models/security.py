"""Security-related models for the authorization code flow.

Contains the PKCE parameters and a wipeable holder for the secrets that
authenticate a live authorization attempt.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class SecretValue:
    """Mutable buffer holding a secret string that can be overwritten.

    Python strings are immutable and cannot be zeroed, so secrets are kept as
    a bytearray and only materialised as ``str`` at the point of use.
    """

    __slots__ = ("_buffer", "_wiped")

    def __init__(self, value: str):
        self._buffer = bytearray(value.encode("ascii"))
        self._wiped = False

    def reveal(self) -> str:
        """Return the secret as a string.

        Raises:
            ValueError: If the secret has already been wiped
        """
        if self._wiped:
            raise ValueError("Secret has been wiped")
        return self._buffer.decode("ascii")

    def wipe(self) -> None:
        """Overwrite the buffer with zeros. Safe to call multiple times."""
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._wiped = True

    @property
    def wiped(self) -> bool:
        return self._wiped

    def __len__(self) -> int:
        return len(self._buffer)

    def __repr__(self) -> str:
        return "SecretValue('**********')"

    __str__ = __repr__


@dataclass(frozen=True)
class PKCEParameters:
    """PKCE (Proof Key for Code Exchange) parameters, RFC 7636.

    Generated once per authorization attempt. The verifier is never logged and
    never sent to the authorization endpoint; only the challenge is.
    """

    code_verifier: SecretValue = field(repr=False)
    code_challenge: str = field()
    code_challenge_method: str = field(default="S256")

    def __post_init__(self) -> None:
        """Validate PKCE parameters meet RFC 7636 requirements."""
        if not (43 <= len(self.code_verifier) <= 128):
            raise ValueError("code_verifier must be 43-128 characters")
        if not self.code_challenge:
            raise ValueError("code_challenge must not be empty")
        if self.code_challenge_method != "S256":
            raise ValueError("Only S256 code challenge method is supported")

    def wipe(self) -> None:
        self.code_verifier.wipe()
