"""Canonical Pydantic models shared across all oidc-cli modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Configuration models** -- :class:`UserConfig` (persisted defaults in the
user's config directory) and :class:`FlowConfig` (the fully resolved
settings for one authentication attempt).

**Flow models** -- produced and consumed by :mod:`oidccli.flow`:
    :class:`AuthorizationRequest`, :class:`CallbackResult`,
    :class:`Claim`, and :class:`TokenResult`.

**Outcome models** -- :class:`FlowSuccess` and :class:`FlowError`, the two
variants of :data:`FlowOutcome` returned by
:meth:`~oidccli.flow.orchestrator.FlowOrchestrator.run`.

Flow and outcome models are frozen. Fields that hold secrets (state, nonce,
code verifier, authorization code, tokens) are excluded from ``repr`` so
that an accidental ``debug(f"{request!r}")`` never leaks them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union
from urllib.parse import parse_qs, urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from oidccli.exceptions import FlowErrorKind

DEFAULT_SCOPE = "openid"
"""Scope requested when none is configured."""

DEFAULT_LISTENER_TIMEOUT = 300.0
"""Seconds the redirect listener waits for the browser before giving up."""

DEFAULT_REDIRECT_PATH = "/"
"""Path component of the loopback redirect URI."""


# --- Configuration ---


class UserConfig(BaseModel):
    """User-wide defaults persisted at ``~/.config/oidc-cli/config.json``.

    Loaded and saved by :func:`~oidccli.config.load_user_config` and
    :func:`~oidccli.config.save_user_config`. Fields here have the lowest
    precedence and are overridden by environment variables and CLI flags.
    See :func:`~oidccli.config.resolve_flow_config` for the full chain.
    """

    authority: Optional[str] = Field(
        default=None, description="Default OIDC authority URL"
    )
    client_id: Optional[str] = Field(
        default=None, description="Default OAuth2 client ID"
    )
    scope: Optional[str] = Field(
        default=None, description="Default space-separated scopes"
    )
    port: Optional[int] = Field(
        default=None, ge=1, le=65535, description="Default callback port"
    )
    audience: Optional[str] = Field(
        default=None, description="Default audience parameter"
    )
    timeout: Optional[float] = Field(
        default=None, gt=0, description="Listener timeout in seconds"
    )
    disable_endpoint_validation: bool = Field(
        default=False,
        description="Skip cross-host validation of the main provider endpoints",
    )
    require_id_token_signature: bool = Field(
        default=False, description="Verify the ID token signature against the JWKS"
    )


class FlowConfig(BaseModel):
    """Resolved settings for a single authentication attempt.

    Built by :func:`~oidccli.config.resolve_flow_config` from CLI flags,
    environment variables and the user config file, then handed to
    :meth:`~oidccli.flow.orchestrator.FlowOrchestrator.run`.

    Example::

        FlowConfig(
            authority="https://idp.example.com",
            client_id="abc123",
            scope="openid profile",
        )
    """

    authority: str = Field(description="OIDC authority (issuer) URL")
    client_id: str = Field(min_length=1, description="OAuth2 client ID")
    scope: str = Field(default=DEFAULT_SCOPE, description="Space-separated scopes")
    port: Optional[int] = Field(
        default=None, ge=1, le=65535, description="Fixed callback port; random if unset"
    )
    audience: Optional[str] = Field(
        default=None, description="Value for the 'audience' authorization parameter"
    )
    diagnostics: bool = Field(default=False, description="Enable diagnostic output")
    disable_endpoint_validation: bool = Field(
        default=False,
        description="Exempt the main provider endpoints from cross-host validation",
    )
    require_id_token_signature: bool = Field(
        default=False, description="Verify the ID token signature against the JWKS"
    )
    timeout: float = Field(
        default=DEFAULT_LISTENER_TIMEOUT,
        gt=0,
        description="Seconds to wait for the browser redirect",
    )
    redirect_path: str = Field(default=DEFAULT_REDIRECT_PATH)

    @field_validator("authority")
    @classmethod
    def _check_authority(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError(f"authority must be an absolute http(s) URL, got {value!r}")
        return value

    @property
    def scopes(self) -> tuple[str, ...]:
        """The configured scopes as an ordered, de-duplicated tuple."""
        return tuple(dict.fromkeys(self.scope.split()))


# --- Flow ---


class AuthorizationRequest(BaseModel):
    """Everything sent to the provider for one authorization attempt.

    Owned by the orchestrator for the lifetime of a single flow. ``state``,
    ``nonce`` and ``code_verifier`` are generated fresh per invocation and
    are hidden from ``repr``.
    """

    model_config = ConfigDict(frozen=True)

    authority: str
    client_id: str
    scope: tuple[str, ...]
    redirect_uri: str
    state: str = Field(repr=False)
    nonce: str = Field(repr=False)
    code_verifier: str = Field(repr=False)
    code_challenge: str
    code_challenge_method: str = "S256"
    extra_params: dict[str, str] = Field(default_factory=dict)


class CallbackResult(BaseModel):
    """Query parameters of the single redirect captured by the listener."""

    model_config = ConfigDict(frozen=True)

    raw_query: dict[str, str] = Field(default_factory=dict, repr=False)
    received_state: Optional[str] = Field(default=None, repr=False)
    authorization_code: Optional[str] = Field(default=None, repr=False)
    error: Optional[str] = None
    error_description: Optional[str] = None

    @classmethod
    def from_query(cls, query: str) -> CallbackResult:
        """Parse a raw query string, keeping the first value of each key."""
        params = {
            key: values[0]
            for key, values in parse_qs(query, keep_blank_values=True).items()
        }
        return cls(
            raw_query=params,
            received_state=params.get("state"),
            authorization_code=params.get("code") or None,
            error=params.get("error") or None,
            error_description=params.get("error_description") or None,
        )

    @property
    def is_error(self) -> bool:
        return self.error is not None


class Claim(BaseModel):
    """A single ``(type, value)`` pair taken from the ID token."""

    model_config = ConfigDict(frozen=True)

    type: str
    value: str


class TokenResult(BaseModel):
    """Tokens and user claims obtained from a successful code exchange.

    Serialises with camelCase keys (``idToken``, ``accessToken``,
    ``refreshToken``, ``expiresAt``, ``claims``) to match the output
    contract; see :class:`~oidccli.flow.reporter.ResultReporter`.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id_token: Optional[str] = Field(default=None, alias="idToken", repr=False)
    access_token: str = Field(alias="accessToken", repr=False)
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken", repr=False)
    expires_at: datetime = Field(alias="expiresAt")
    claims: tuple[Claim, ...] = ()


# --- Outcome ---


class FlowSuccess(BaseModel):
    """Terminal outcome of a flow that produced tokens."""

    model_config = ConfigDict(frozen=True)

    token: TokenResult

    @property
    def is_success(self) -> bool:
        return True


class FlowError(BaseModel):
    """Terminal outcome of a flow that failed, with its error kind."""

    model_config = ConfigDict(frozen=True)

    kind: FlowErrorKind
    message: str

    @property
    def is_success(self) -> bool:
        return False


FlowOutcome = Union[FlowSuccess, FlowError]
"""Either :class:`FlowSuccess` or :class:`FlowError`."""
