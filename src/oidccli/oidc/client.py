"""Authorization URL construction, code exchange and ID token validation.

These are the protocol operations the flow delegates to once discovery has
produced a :class:`~oidccli.oidc.discovery.ProviderMetadata`:

1. :func:`build_authorization_url` -- the URL opened in the browser.
2. :func:`exchange_code` -- trades the authorization code plus the PKCE
   verifier for tokens at the token endpoint.
3. :func:`validate_identity_token` -- checks the ID token's claims and,
   when requested, its signature against the provider's JWKS.
4. :func:`claims_from_payload` and :func:`build_token_result` -- turn the
   token response into the immutable :class:`~oidccli.models.TokenResult`.
"""

from __future__ import annotations

import json
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import urlencode, urlsplit

import httpx
import jwt
from pydantic import ValidationError

from oidccli.exceptions import TokenExchangeFailedError, TokenValidationFailedError
from oidccli.models import AuthorizationRequest, Claim, TokenResult
from oidccli.oidc.discovery import ProviderMetadata

TOKEN_TIMEOUT = 30.0

CLOCK_SKEW = 300
"""Leeway in seconds when checking ``exp``/``iat``/``nbf``."""

FILTERED_CLAIMS = frozenset(
    {"iss", "aud", "exp", "nbf", "iat", "nonce", "at_hash", "c_hash", "auth_time"}
)
"""Protocol claims left out of the reported user claims."""

SIGNATURE_ALGORITHMS = [
    "RS256", "RS384", "RS512",
    "PS256", "PS384", "PS512",
    "ES256", "ES384", "ES512",
]


def build_authorization_url(
    metadata: ProviderMetadata, request: AuthorizationRequest
) -> str:
    """Return the authorization endpoint URL for *request*.

    Extra parameters (e.g. ``audience``) are appended after the protocol
    parameters and cannot override them.
    """
    params: dict[str, str] = {
        "response_type": "code",
        "client_id": request.client_id,
        "redirect_uri": request.redirect_uri,
        "scope": " ".join(request.scope),
        "state": request.state,
        "nonce": request.nonce,
        "code_challenge": request.code_challenge,
        "code_challenge_method": request.code_challenge_method,
    }
    for key, value in request.extra_params.items():
        params.setdefault(key, value)

    endpoint = metadata.authorization_endpoint
    separator = "&" if urlsplit(endpoint).query else "?"
    return f"{endpoint}{separator}{urlencode(params)}"


def exchange_code(
    metadata: ProviderMetadata, request: AuthorizationRequest, code: str
) -> dict[str, Any]:
    """Exchange an authorization code for tokens.

    Args:
        metadata: Discovered provider endpoints.
        request: The authorization request the code was issued for; its
            ``code_verifier`` and ``redirect_uri`` are sent back.
        code: The authorization code from the redirect.

    Returns:
        The parsed JSON token response containing at least
        ``access_token``.

    Raises:
        TokenExchangeFailedError: On HTTP errors, provider error bodies,
            non-JSON responses or a missing ``access_token``.
    """
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": request.redirect_uri,
        "client_id": request.client_id,
        "code_verifier": request.code_verifier,
    }

    try:
        response = httpx.post(
            metadata.token_endpoint,
            data=data,
            headers={"Accept": "application/json"},
            timeout=TOKEN_TIMEOUT,
        )
        response.raise_for_status()
        token_data: Any = response.json()
    except httpx.HTTPStatusError as exc:
        raise TokenExchangeFailedError(
            f"Token exchange failed with status {exc.response.status_code}: "
            f"{_describe_error_body(exc.response)}"
        ) from exc
    except httpx.HTTPError as exc:
        raise TokenExchangeFailedError(f"Token exchange failed: {exc}") from exc
    except ValueError as exc:
        raise TokenExchangeFailedError(
            "Token endpoint returned a response that is not valid JSON"
        ) from exc

    if not isinstance(token_data, dict):
        raise TokenExchangeFailedError("Token response is not a JSON object")
    if "error" in token_data:
        raise TokenExchangeFailedError(
            f"Token exchange failed: {_format_oauth_error(token_data)}"
        )
    if not token_data.get("access_token"):
        raise TokenExchangeFailedError("Token response missing 'access_token' field")
    for field in ("access_token", "refresh_token", "id_token"):
        value = token_data.get(field)
        if value is not None and not isinstance(value, str):
            raise TokenExchangeFailedError(
                f"Token response field '{field}' is not a string"
            )

    return token_data


def validate_identity_token(
    id_token: str,
    metadata: ProviderMetadata,
    request: AuthorizationRequest,
    require_signature: bool = False,
    jwks_client: Optional[jwt.PyJWKClient] = None,
) -> dict[str, Any]:
    """Validate an ID token and return its payload.

    Claims are always checked: ``iss`` must equal the discovered issuer,
    ``aud`` must contain the client ID, ``exp`` and ``iat`` must be present
    and current within :data:`CLOCK_SKEW`, and ``nonce`` must equal the
    request's nonce. The signature is only verified when
    *require_signature* is set, using the key published at ``jwks_uri``.

    Raises:
        TokenValidationFailedError: If any check fails.
    """
    options: dict[str, Any] = {
        "verify_signature": require_signature,
        "verify_exp": True,
        "verify_iat": True,
        "verify_nbf": True,
        "verify_aud": True,
        "verify_iss": True,
        "require": ["iss", "sub", "aud", "exp", "iat"],
    }
    key: Any = ""
    algorithms: Optional[list[str]] = None

    try:
        if require_signature:
            if not metadata.jwks_uri:
                raise TokenValidationFailedError(
                    "Provider does not publish a 'jwks_uri'; cannot verify the "
                    "ID token signature"
                )
            client = jwks_client or jwt.PyJWKClient(metadata.jwks_uri)
            key = client.get_signing_key_from_jwt(id_token).key
            algorithms = SIGNATURE_ALGORITHMS

        payload: dict[str, Any] = jwt.decode(
            id_token,
            key=key,
            algorithms=algorithms,
            audience=request.client_id,
            issuer=metadata.issuer,
            leeway=CLOCK_SKEW,
            options=options,
        )
    except jwt.PyJWTError as exc:
        raise TokenValidationFailedError(f"ID token validation failed: {exc}") from exc

    nonce = payload.get("nonce")
    if not isinstance(nonce, str) or not secrets.compare_digest(
        nonce.encode("utf-8"), request.nonce.encode("utf-8")
    ):
        raise TokenValidationFailedError(
            "ID token nonce does not match the authorization request"
        )

    return payload


def claims_from_payload(payload: dict[str, Any]) -> list[Claim]:
    """Flatten an ID token payload into ordered ``(type, value)`` claims.

    Array values produce one claim per element; non-string values are JSON
    encoded. Protocol claims in :data:`FILTERED_CLAIMS` are skipped.
    """
    claims: list[Claim] = []
    for claim_type, value in payload.items():
        if claim_type in FILTERED_CLAIMS:
            continue
        items = value if isinstance(value, list) else [value]
        for item in items:
            claims.append(Claim(type=claim_type, value=_claim_value(item)))
    return claims


def build_token_result(
    token_data: dict[str, Any],
    claims: list[Claim],
    now: Optional[datetime] = None,
) -> TokenResult:
    """Assemble a :class:`~oidccli.models.TokenResult` from a token response.

    ``expires_at`` is ``now + expires_in``. A response without a usable
    ``expires_in`` is treated as non-expiring and reported with the
    maximum representable timestamp.

    Raises:
        TokenExchangeFailedError: If the token fields do not form a valid
            :class:`~oidccli.models.TokenResult`.
    """
    now = now or datetime.now(timezone.utc)
    expires_in = token_data.get("expires_in")
    never = datetime.max.replace(tzinfo=timezone.utc)
    try:
        seconds = int(expires_in) if expires_in is not None else 0
    except (TypeError, ValueError, OverflowError):
        seconds = 0
    try:
        expires_at = now + timedelta(seconds=seconds) if seconds > 0 else never
    except OverflowError:
        expires_at = never

    try:
        return TokenResult(
            id_token=token_data.get("id_token") or None,
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token") or None,
            expires_at=expires_at,
            claims=tuple(claims),
        )
    except ValidationError as exc:
        fields = ", ".join(
            str(error["loc"][0]) for error in exc.errors() if error["loc"]
        )
        raise TokenExchangeFailedError(
            f"Invalid token response fields: {fields}"
        ) from exc


def _claim_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _format_oauth_error(body: dict[str, Any]) -> str:
    error = str(body.get("error", "unknown_error"))
    description = body.get("error_description")
    return f"{error} ({description})" if description else error


def _describe_error_body(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "error" in body:
        return _format_oauth_error(body)
    return response.text
