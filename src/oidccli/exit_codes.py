"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific failure category and is referenced by the
corresponding :class:`~oidccli.exceptions.OidcCliError` subclass. Shell
wrappers can inspect the exit code to tell a rejected login apart from a
timeout or an unreachable provider without parsing stderr.

Example::

    $ oidc-cli -a https://idp.example.com -c abc123 > tokens.json
    $ echo $?
    8   # EXIT_TIMEOUT -- nobody completed the login in the browser
"""

EXIT_SUCCESS = 0
"""Authentication completed and the tokens were printed."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred (including an unavailable callback port)."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required options."""

EXIT_AUTH_FAILURE = 3
"""The provider rejected the login, the state did not match, or token handling failed."""

EXIT_DISCOVERY_FAILURE = 6
"""The provider's discovery document could not be fetched or failed validation."""

EXIT_TIMEOUT = 8
"""No browser redirect arrived before the listener deadline."""

EXIT_CANCELLED = 130
"""The flow was cancelled by the user (Ctrl-C)."""
