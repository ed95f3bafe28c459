"""Shared test fixtures for oidc-cli.

Provides reusable fixtures for provider metadata, authorization requests,
isolated config environments, output state and CLI invocation. These
fixtures are automatically discovered by pytest and available to all test
modules without explicit imports.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from oidccli.flow.pkce import compute_code_challenge
from oidccli.models import AuthorizationRequest
from oidccli.oidc.discovery import ProviderMetadata
from oidccli.output import reset_output


AUTHORITY = "https://idp.example.com"
CLIENT_ID = "cli-client"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    Resetting forces a fresh manager to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Provider fixtures
# ---------------------------------------------------------------------------


def _make_discovery_document(authority: str = AUTHORITY, **overrides: object) -> dict:
    """A discovery document whose endpoints all live on *authority*."""
    doc: dict[str, object] = {
        "issuer": authority,
        "authorization_endpoint": f"{authority}/authorize",
        "token_endpoint": f"{authority}/oauth/token",
        "userinfo_endpoint": f"{authority}/userinfo",
        "jwks_uri": f"{authority}/.well-known/jwks.json",
        "code_challenge_methods_supported": ["S256"],
        "response_types_supported": ["code"],
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def discovery_document() -> dict:
    return _make_discovery_document()


@pytest.fixture
def provider_metadata(discovery_document: dict) -> ProviderMetadata:
    return ProviderMetadata.model_validate(discovery_document)


@pytest.fixture
def authorization_request() -> AuthorizationRequest:
    """A fixed request with known state, nonce and verifier."""
    verifier = "v" * 64
    return AuthorizationRequest(
        authority=AUTHORITY,
        client_id=CLIENT_ID,
        scope=("openid", "profile"),
        redirect_uri="http://localhost:53682",
        state="state-123",
        nonce="nonce-456",
        code_verifier=verifier,
        code_challenge=compute_code_challenge(verifier),
    )


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path
    so that tests never touch real user config, and clears all
    OIDC_CLI_* environment variables.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("oidccli.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in [
        "OIDC_CLI_AUTHORITY",
        "OIDC_CLI_CLIENT_ID",
        "OIDC_CLI_SCOPE",
        "OIDC_CLI_PORT",
        "OIDC_CLI_AUDIENCE",
        "OIDC_CLI_TIMEOUT",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
