"""Tests for oidccli.oidc.discovery -- fetching and policy validation."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest

from oidccli.exceptions import DiscoveryFailedError
from oidccli.oidc.discovery import (
    RELAXED_ENDPOINT_EXCLUDES,
    DiscoveryPolicy,
    discovery_url,
    fetch_discovery_document,
    validate_discovery_document,
)

AUTHORITY = "https://idp.example.com"


def _mock_httpx_get(
    json_response: Any = None,
    status_code: int = 200,
) -> MagicMock:
    """Create a mock for httpx.get that returns a JSON response."""
    mock_response = MagicMock(spec=httpx.Response)
    mock_response.status_code = status_code
    mock_response.json.return_value = json_response
    mock_response.text = str(json_response)

    if status_code >= 400:
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            message=f"HTTP {status_code}",
            request=MagicMock(),
            response=mock_response,
        )
    else:
        mock_response.raise_for_status.return_value = None

    return mock_response


class TestDiscoveryUrl:
    def test_appends_well_known(self) -> None:
        assert discovery_url(AUTHORITY) == f"{AUTHORITY}/.well-known/openid-configuration"

    def test_trailing_slash(self) -> None:
        assert discovery_url(AUTHORITY + "/") == f"{AUTHORITY}/.well-known/openid-configuration"

    def test_keeps_tenant_path(self) -> None:
        assert (
            discovery_url("https://login.example.com/tenant-1")
            == "https://login.example.com/tenant-1/.well-known/openid-configuration"
        )


class TestPolicy:
    def test_strict_default(self) -> None:
        policy = DiscoveryPolicy()
        assert policy.require_https
        assert policy.validate_issuer_name
        assert policy.validate_endpoints
        assert policy.endpoint_validation_excludes == ()

    def test_relaxed_excludes_main_endpoints(self) -> None:
        policy = DiscoveryPolicy.relaxed()
        assert policy.endpoint_validation_excludes == RELAXED_ENDPOINT_EXCLUDES
        assert "authorization_endpoint" in policy.endpoint_validation_excludes
        assert "jwks_uri" not in policy.endpoint_validation_excludes
        assert policy.require_https


class TestFetch:
    def test_fetches_and_parses(self, discovery_document: dict) -> None:
        with patch(
            "oidccli.oidc.discovery.httpx.get",
            return_value=_mock_httpx_get(discovery_document),
        ) as mock_get:
            metadata = fetch_discovery_document(AUTHORITY)

        mock_get.assert_called_once()
        assert mock_get.call_args.args[0] == f"{AUTHORITY}/.well-known/openid-configuration"
        assert metadata.issuer == AUTHORITY
        assert metadata.authorization_endpoint == f"{AUTHORITY}/authorize"
        assert metadata.token_endpoint == f"{AUTHORITY}/oauth/token"
        assert metadata.code_challenge_methods_supported == ["S256"]
        assert metadata.model_extra == {"response_types_supported": ["code"]}

    def test_http_error_status(self) -> None:
        with patch(
            "oidccli.oidc.discovery.httpx.get",
            return_value=_mock_httpx_get({"error": "boom"}, status_code=404),
        ):
            with pytest.raises(DiscoveryFailedError, match="status 404"):
                fetch_discovery_document(AUTHORITY)

    def test_network_error(self) -> None:
        with patch(
            "oidccli.oidc.discovery.httpx.get",
            side_effect=httpx.ConnectError("connection refused"),
        ):
            with pytest.raises(DiscoveryFailedError, match="connection refused"):
                fetch_discovery_document(AUTHORITY)

    def test_invalid_json(self) -> None:
        mock_response = _mock_httpx_get()
        mock_response.json.side_effect = ValueError("not json")
        with patch("oidccli.oidc.discovery.httpx.get", return_value=mock_response):
            with pytest.raises(DiscoveryFailedError, match="not valid JSON"):
                fetch_discovery_document(AUTHORITY)

    def test_not_an_object(self) -> None:
        with patch(
            "oidccli.oidc.discovery.httpx.get", return_value=_mock_httpx_get(["a", "b"])
        ):
            with pytest.raises(DiscoveryFailedError, match="not a JSON object"):
                fetch_discovery_document(AUTHORITY)

    def test_plain_http_authority_rejected_without_request(self) -> None:
        with patch("oidccli.oidc.discovery.httpx.get") as mock_get:
            with pytest.raises(DiscoveryFailedError, match="HTTPS"):
                fetch_discovery_document("http://idp.example.com")
        mock_get.assert_not_called()

    def test_loopback_http_authority_allowed(self) -> None:
        authority = "http://localhost:8080"
        doc = {
            "issuer": authority,
            "authorization_endpoint": f"{authority}/authorize",
            "token_endpoint": f"{authority}/token",
        }
        with patch("oidccli.oidc.discovery.httpx.get", return_value=_mock_httpx_get(doc)):
            metadata = fetch_discovery_document(authority)
        assert metadata.token_endpoint == f"{authority}/token"


class TestValidate:
    @pytest.mark.parametrize("field", ["issuer", "authorization_endpoint", "token_endpoint"])
    def test_required_fields(self, discovery_document: dict, field: str) -> None:
        del discovery_document[field]
        with pytest.raises(DiscoveryFailedError, match=f"missing '{field}'"):
            validate_discovery_document(discovery_document, AUTHORITY, DiscoveryPolicy())

    def test_issuer_mismatch(self, discovery_document: dict) -> None:
        discovery_document["issuer"] = "https://evil.example.com"
        with pytest.raises(DiscoveryFailedError, match="does not match authority"):
            validate_discovery_document(discovery_document, AUTHORITY, DiscoveryPolicy())

    def test_issuer_trailing_slash_tolerated(self, discovery_document: dict) -> None:
        discovery_document["issuer"] = AUTHORITY + "/"
        validate_discovery_document(discovery_document, AUTHORITY, DiscoveryPolicy())

    def test_issuer_check_can_be_disabled(self, discovery_document: dict) -> None:
        discovery_document["issuer"] = "https://other.example.com"
        policy = DiscoveryPolicy(validate_issuer_name=False)
        validate_discovery_document(discovery_document, AUTHORITY, policy)

    def test_cross_host_endpoint_rejected(self, discovery_document: dict) -> None:
        discovery_document["token_endpoint"] = "https://tokens.example.net/token"
        with pytest.raises(DiscoveryFailedError, match="--disable-endpoint-validation"):
            validate_discovery_document(discovery_document, AUTHORITY, DiscoveryPolicy())

    @pytest.mark.parametrize(
        "endpoint",
        [
            "https://idp.example.com:443/token",
            "https://IDP.Example.com/token",
            "https://client@idp.example.com/token",
        ],
    )
    def test_same_origin_spellings_accepted(
        self, discovery_document: dict, endpoint: str
    ) -> None:
        discovery_document["token_endpoint"] = endpoint
        validate_discovery_document(discovery_document, AUTHORITY, DiscoveryPolicy())

    def test_different_port_rejected(self, discovery_document: dict) -> None:
        discovery_document["token_endpoint"] = "https://idp.example.com:8443/token"
        with pytest.raises(DiscoveryFailedError, match="token_endpoint"):
            validate_discovery_document(discovery_document, AUTHORITY, DiscoveryPolicy())

    def test_invalid_port_rejected(self, discovery_document: dict) -> None:
        discovery_document["token_endpoint"] = "https://idp.example.com:99999/token"
        with pytest.raises(DiscoveryFailedError, match="Invalid port"):
            validate_discovery_document(discovery_document, AUTHORITY, DiscoveryPolicy())

    def test_cross_host_endpoint_allowed_when_relaxed(self, discovery_document: dict) -> None:
        discovery_document["authorization_endpoint"] = "https://login.example.net/authorize"
        discovery_document["token_endpoint"] = "https://login.example.net/token"
        validate_discovery_document(discovery_document, AUTHORITY, DiscoveryPolicy.relaxed())

    def test_relaxed_still_checks_jwks_uri(self, discovery_document: dict) -> None:
        discovery_document["jwks_uri"] = "https://keys.example.net/jwks"
        with pytest.raises(DiscoveryFailedError, match="jwks_uri"):
            validate_discovery_document(
                discovery_document, AUTHORITY, DiscoveryPolicy.relaxed()
            )

    def test_relaxed_still_requires_https(self, discovery_document: dict) -> None:
        discovery_document["token_endpoint"] = "http://login.example.net/token"
        with pytest.raises(DiscoveryFailedError, match="HTTPS"):
            validate_discovery_document(
                discovery_document, AUTHORITY, DiscoveryPolicy.relaxed()
            )

    def test_unlisted_endpoint_fields_are_checked(self, discovery_document: dict) -> None:
        discovery_document["device_authorization_endpoint"] = "https://other.example.net/device"
        with pytest.raises(DiscoveryFailedError, match="device_authorization_endpoint"):
            validate_discovery_document(discovery_document, AUTHORITY, DiscoveryPolicy())

    def test_malformed_endpoint(self, discovery_document: dict) -> None:
        discovery_document["userinfo_endpoint"] = "not a url"
        with pytest.raises(DiscoveryFailedError, match="Malformed"):
            validate_discovery_document(discovery_document, AUTHORITY, DiscoveryPolicy())

    def test_endpoint_validation_can_be_disabled(self, discovery_document: dict) -> None:
        discovery_document["jwks_uri"] = "https://keys.example.net/jwks"
        policy = DiscoveryPolicy(validate_endpoints=False)
        validate_discovery_document(discovery_document, AUTHORITY, policy)
