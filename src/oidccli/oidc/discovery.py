"""OpenID Connect discovery with an explicit endpoint-validation policy.

This module fetches the provider's discovery document from
``{authority}/.well-known/openid-configuration`` and validates it before
the flow trusts any endpoint in it:

* the authority and every endpoint must use HTTPS (loopback hosts excepted),
* the ``issuer`` must match the authority,
* every ``*_endpoint`` field and ``jwks_uri`` must live on the authority's
  scheme and host, unless the field is listed in
  :attr:`DiscoveryPolicy.endpoint_validation_excludes`.

The exclude list is a deliberate security relaxation for providers that
host their endpoints elsewhere (Amazon Cognito is the usual suspect); it is
only populated when the user passes ``--disable-endpoint-validation``.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from oidccli.exceptions import DiscoveryFailedError

WELL_KNOWN_PATH = "/.well-known/openid-configuration"

RELAXED_ENDPOINT_EXCLUDES = (
    "authorization_endpoint",
    "token_endpoint",
    "userinfo_endpoint",
    "end_session_endpoint",
    "revocation_endpoint",
)
"""Fields exempted from cross-host validation by ``--disable-endpoint-validation``."""

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

DISCOVERY_TIMEOUT = 30.0

DEFAULT_PORTS = {"http": 80, "https": 443}


class DiscoveryPolicy(BaseModel):
    """Rules applied to a discovery document before it is used."""

    model_config = ConfigDict(frozen=True)

    require_https: bool = True
    validate_issuer_name: bool = True
    validate_endpoints: bool = True
    endpoint_validation_excludes: tuple[str, ...] = ()

    @classmethod
    def relaxed(cls) -> DiscoveryPolicy:
        """Policy that skips cross-host checks for the main protocol endpoints."""
        return cls(endpoint_validation_excludes=RELAXED_ENDPOINT_EXCLUDES)


class ProviderMetadata(BaseModel):
    """The subset of the discovery document the flow relies on.

    Unknown fields are preserved in ``model_extra``.
    """

    model_config = ConfigDict(extra="allow")

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: Optional[str] = None
    end_session_endpoint: Optional[str] = None
    revocation_endpoint: Optional[str] = None
    jwks_uri: Optional[str] = None
    code_challenge_methods_supported: list[str] = Field(default_factory=list)


def discovery_url(authority: str) -> str:
    """Return the well-known discovery URL for *authority*."""
    return authority.rstrip("/") + WELL_KNOWN_PATH


def fetch_discovery_document(
    authority: str, policy: Optional[DiscoveryPolicy] = None
) -> ProviderMetadata:
    """Fetch, validate and parse the provider's discovery document.

    Args:
        authority: The OIDC authority (issuer) URL.
        policy: Validation rules; the strict default when omitted.

    Returns:
        The validated :class:`ProviderMetadata`.

    Raises:
        DiscoveryFailedError: If the document cannot be fetched, is not a
            JSON object, or violates *policy*.
    """
    policy = policy or DiscoveryPolicy()
    _check_secure(authority, "Authority", policy)

    url = discovery_url(authority)
    try:
        response = httpx.get(
            url,
            headers={"Accept": "application/json"},
            timeout=DISCOVERY_TIMEOUT,
        )
        response.raise_for_status()
        doc: Any = response.json()
    except httpx.HTTPStatusError as exc:
        raise DiscoveryFailedError(
            f"OpenID discovery failed with status {exc.response.status_code}: "
            f"{exc.response.text}"
        ) from exc
    except httpx.HTTPError as exc:
        raise DiscoveryFailedError(f"OpenID discovery failed: {exc}") from exc
    except ValueError as exc:
        raise DiscoveryFailedError(
            f"OpenID discovery document at {url} is not valid JSON"
        ) from exc

    if not isinstance(doc, dict):
        raise DiscoveryFailedError(
            f"OpenID discovery document at {url} is not a JSON object"
        )

    validate_discovery_document(doc, authority, policy)

    try:
        return ProviderMetadata.model_validate(doc)
    except ValidationError as exc:
        raise DiscoveryFailedError(f"Invalid OpenID discovery document: {exc}") from exc


def validate_discovery_document(
    doc: dict[str, Any], authority: str, policy: DiscoveryPolicy
) -> None:
    """Apply *policy* to a raw discovery document.

    Raises:
        DiscoveryFailedError: On the first violation found.
    """
    for required in ("issuer", "authorization_endpoint", "token_endpoint"):
        if not isinstance(doc.get(required), str) or not doc[required]:
            raise DiscoveryFailedError(
                f"OpenID discovery document missing '{required}'"
            )

    issuer: str = doc["issuer"]
    if policy.validate_issuer_name and issuer.rstrip("/") != authority.rstrip("/"):
        raise DiscoveryFailedError(
            f"Issuer name '{issuer}' does not match authority '{authority}'"
        )

    authority_origin = _origin(authority)
    for key, value in doc.items():
        if not (key.endswith("_endpoint") or key == "jwks_uri"):
            continue
        if not isinstance(value, str):
            continue

        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise DiscoveryFailedError(f"Malformed endpoint '{key}': {value}")
        _check_secure(value, f"Endpoint '{key}'", policy)

        if not policy.validate_endpoints or key in policy.endpoint_validation_excludes:
            continue
        if _origin(value) != authority_origin:
            raise DiscoveryFailedError(
                f"Endpoint '{key}' ({value}) is on a different host than the "
                f"authority; use --disable-endpoint-validation if this is expected"
            )


def _origin(url: str) -> tuple[str, str, Optional[int]]:
    """Return ``(scheme, host, port)`` with the scheme's default port filled in."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    try:
        port = parts.port
    except ValueError as exc:
        raise DiscoveryFailedError(f"Invalid port in URL: {url}") from exc
    return scheme, parts.hostname or "", port or DEFAULT_PORTS.get(scheme)


def _check_secure(url: str, label: str, policy: DiscoveryPolicy) -> None:
    if not policy.require_https:
        return
    parts = urlsplit(url)
    if parts.scheme == "https":
        return
    if parts.scheme == "http" and (parts.hostname or "") in LOOPBACK_HOSTS:
        return
    raise DiscoveryFailedError(f"{label} does not use HTTPS: {url}")
