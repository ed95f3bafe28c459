"""PKCE and anti-forgery parameter generation.

Implements the S256 method of :rfc:`7636` together with the ``state`` and
``nonce`` values bound to one authorization request. Every value comes from
:mod:`secrets`, the operating system's CSPRNG.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

from pydantic import BaseModel, ConfigDict, Field

VERIFIER_BYTES = 64
"""Random bytes behind the code verifier (86 base64url characters)."""

STATE_BYTES = 32
"""Random bytes behind the state and nonce values (256 bits each)."""


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def compute_code_challenge(code_verifier: str) -> str:
    """Return ``BASE64URL(SHA256(ASCII(code_verifier)))`` without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _b64url(digest)


class PkceParameters(BaseModel):
    """One freshly generated set of PKCE and anti-forgery values."""

    model_config = ConfigDict(frozen=True)

    code_verifier: str = Field(repr=False)
    code_challenge: str
    code_challenge_method: str = "S256"
    state: str = Field(repr=False)
    nonce: str = Field(repr=False)


class PkceChallengeGenerator:
    """Generates PKCE verifier/challenge pairs plus ``state`` and ``nonce``.

    The verifier is 64 random bytes, base64url-encoded without padding,
    which lands at 86 characters: inside the 43-128 range required by
    RFC 7636 section 4.1 and using only unreserved characters. State and
    nonce are independent 32-byte tokens.
    """

    def generate(self) -> PkceParameters:
        """Generate new parameters for a single authorization request.

        Returns:
            A frozen :class:`PkceParameters`. Nothing is cached; two calls
            never share a value.
        """
        code_verifier = _b64url(secrets.token_bytes(VERIFIER_BYTES))
        return PkceParameters(
            code_verifier=code_verifier,
            code_challenge=compute_code_challenge(code_verifier),
            state=secrets.token_urlsafe(STATE_BYTES),
            nonce=secrets.token_urlsafe(STATE_BYTES),
        )
