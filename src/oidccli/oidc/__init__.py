"""OpenID Connect protocol helpers used by the authentication flow.

Exports:
    :class:`DiscoveryPolicy`, :class:`ProviderMetadata` and
    :func:`fetch_discovery_document` -- provider discovery.
    :func:`build_authorization_url`, :func:`exchange_code`,
    :func:`validate_identity_token`, :func:`claims_from_payload` and
    :func:`build_token_result` -- authorization and token handling.
"""

from oidccli.oidc.client import (
    build_authorization_url,
    build_token_result,
    claims_from_payload,
    exchange_code,
    validate_identity_token,
)
from oidccli.oidc.discovery import (
    DiscoveryPolicy,
    ProviderMetadata,
    fetch_discovery_document,
)

__all__ = [
    "DiscoveryPolicy",
    "ProviderMetadata",
    "build_authorization_url",
    "build_token_result",
    "claims_from_payload",
    "exchange_code",
    "fetch_discovery_document",
    "validate_identity_token",
]
