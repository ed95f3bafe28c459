"""Exception hierarchy for oidc-cli.

All exceptions inherit from :class:`OidcCliError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`oidccli.exit_codes`
and a ``kind`` from :class:`FlowErrorKind`. Inside the flow the
orchestrator converts every ``OidcCliError`` into a
:class:`~oidccli.models.FlowError` outcome; the top-level error handler in
:func:`oidccli.app.main` catches the remaining ones and exits with the
appropriate code.

Subclass hierarchy::

    OidcCliError                    (exit 1)
    +-- InvalidUsageError           (exit 2)
    +-- ConfigError                 (exit 1)
    +-- PortUnavailableError        (exit 1)
    +-- BrowserLaunchFailedError    (exit 1, non-fatal inside the flow)
    +-- ListenerTimeoutError        (exit 8)
    +-- ListenerCancelledError      (exit 130)
    +-- ProviderError               (exit 3)
    +-- StateMismatchError          (exit 3)
    +-- DiscoveryFailedError        (exit 6)
    +-- TokenExchangeFailedError    (exit 3)
        +-- TokenValidationFailedError (exit 3)
"""

from __future__ import annotations

import enum

from oidccli.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_DISCOVERY_FAILURE,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_TIMEOUT,
)


class FlowErrorKind(str, enum.Enum):
    """Machine-readable category of a failed authentication flow."""

    PORT_UNAVAILABLE = "port_unavailable"
    BROWSER_LAUNCH_FAILED = "browser_launch_failed"
    LISTENER_TIMEOUT = "listener_timeout"
    LISTENER_CANCELLED = "listener_cancelled"
    PROVIDER_ERROR = "provider_error"
    STATE_MISMATCH = "state_mismatch"
    DISCOVERY_FAILED = "discovery_failed"
    TOKEN_EXCHANGE_FAILED = "token_exchange_failed"
    TOKEN_VALIDATION_FAILED = "token_validation_failed"
    CONFIG_ERROR = "config_error"
    INVALID_USAGE = "invalid_usage"


class OidcCliError(Exception):
    """Base exception for all oidc-cli errors.

    Every subclass sets a class-level ``exit_code`` and ``kind``. The
    entry point catches this exception type and calls
    ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE
    kind: FlowErrorKind = FlowErrorKind.CONFIG_ERROR

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(OidcCliError):
    """Raised for invalid CLI arguments or missing required options."""

    exit_code = EXIT_INVALID_USAGE
    kind = FlowErrorKind.INVALID_USAGE


class ConfigError(OidcCliError):
    """Raised for configuration problems (unreadable or invalid config file)."""

    exit_code = EXIT_GENERIC_FAILURE
    kind = FlowErrorKind.CONFIG_ERROR


class PortUnavailableError(OidcCliError):
    """Raised when no loopback port can be allocated or bound for the callback."""

    exit_code = EXIT_GENERIC_FAILURE
    kind = FlowErrorKind.PORT_UNAVAILABLE


class BrowserLaunchFailedError(OidcCliError):
    """Raised when the system browser could not be opened.

    The flow treats this as degraded rather than fatal: the user can still
    open the printed authorization URL by hand.
    """

    exit_code = EXIT_GENERIC_FAILURE
    kind = FlowErrorKind.BROWSER_LAUNCH_FAILED


class ListenerTimeoutError(OidcCliError):
    """Raised when no redirect reaches the listener before its deadline."""

    exit_code = EXIT_TIMEOUT
    kind = FlowErrorKind.LISTENER_TIMEOUT


class ListenerCancelledError(OidcCliError):
    """Raised when the flow is cancelled while waiting (e.g. Ctrl-C)."""

    exit_code = EXIT_CANCELLED
    kind = FlowErrorKind.LISTENER_CANCELLED


class ProviderError(OidcCliError):
    """Raised when the provider redirects back with ``error`` instead of a code."""

    exit_code = EXIT_AUTH_FAILURE
    kind = FlowErrorKind.PROVIDER_ERROR


class StateMismatchError(OidcCliError):
    """Raised when the callback ``state`` differs from the one sent.

    This is treated as a possible CSRF attempt and is never retried.
    """

    exit_code = EXIT_AUTH_FAILURE
    kind = FlowErrorKind.STATE_MISMATCH


class DiscoveryFailedError(OidcCliError):
    """Raised when the discovery document cannot be fetched or fails validation."""

    exit_code = EXIT_DISCOVERY_FAILURE
    kind = FlowErrorKind.DISCOVERY_FAILED


class TokenExchangeFailedError(OidcCliError):
    """Raised when exchanging the authorization code for tokens fails."""

    exit_code = EXIT_AUTH_FAILURE
    kind = FlowErrorKind.TOKEN_EXCHANGE_FAILED


class TokenValidationFailedError(TokenExchangeFailedError):
    """Raised when the returned ID token fails signature or claims validation."""

    kind = FlowErrorKind.TOKEN_VALIDATION_FAILED


_EXIT_CODES = {
    cls.kind: cls.exit_code
    for cls in (
        InvalidUsageError,
        ConfigError,
        PortUnavailableError,
        BrowserLaunchFailedError,
        ListenerTimeoutError,
        ListenerCancelledError,
        ProviderError,
        StateMismatchError,
        DiscoveryFailedError,
        TokenExchangeFailedError,
        TokenValidationFailedError,
    )
}


def exit_code_for(kind: FlowErrorKind) -> int:
    """Return the process exit code for an error *kind*."""
    return _EXIT_CODES.get(kind, EXIT_GENERIC_FAILURE)
