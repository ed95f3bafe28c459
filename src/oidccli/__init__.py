"""oidc-cli -- Interactively authenticate against an OpenID Connect provider.

This package runs the OAuth2 Authorization Code flow with PKCE from a
terminal: it opens the user's browser at the provider's authorization
endpoint, receives the redirect on a short-lived loopback HTTP listener,
exchanges the authorization code for tokens and prints the result as JSON.

Typical usage::

    oidc-cli --authority https://idp.example.com --clientId abc123 \\
        --scope "openid profile"

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models for requests, callbacks, tokens and outcomes.
    config: XDG-aware user configuration and precedence resolution.
    exceptions: Exception hierarchy with error kinds and exit codes.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
    flow: The local authorization-callback engine.
    oidc: Discovery, authorization URL, token exchange and ID token helpers.
"""

__version__ = "0.1.0"
