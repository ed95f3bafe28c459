"""Typer application and CLI entry point for oidc-cli.

``oidc-cli`` is a single root command: it resolves its settings, runs one
Authorization Code + PKCE login through
:class:`~oidccli.flow.orchestrator.FlowOrchestrator` and prints the token
record on stdout.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. Unhandled exceptions are written to a crash log under
the data directory.

See Also:
    :mod:`oidccli.config`: Settings resolution.
    :mod:`oidccli.output`: Output formatting initialised in :func:`authenticate`.
"""

from __future__ import annotations

import signal
import sys
import threading
import traceback
from datetime import datetime
from typing import Any, Optional

import typer

from oidccli import __version__
from oidccli.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="oidc-cli",
    help="Sign in to an OpenID Connect provider from the terminal and print the tokens.",
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"oidc-cli {__version__}")
        raise typer.Exit()


def _install_cancel_handler(cancel: threading.Event) -> Any:
    """Route Ctrl-C to *cancel*; a second Ctrl-C exits straight away.

    Returns:
        The previous SIGINT handler, for :func:`signal.signal` to restore.
    """

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        if cancel.is_set():
            sys.stderr.write("\nCancelled.\n")
            sys.exit(EXIT_CANCELLED)
        cancel.set()

    return signal.signal(signal.SIGINT, _handler)


@app.command()
def authenticate(
    authority: Optional[str] = typer.Option(
        None, "--authority", "-a", help="OIDC authority (issuer) URL."
    ),
    client_id: Optional[str] = typer.Option(
        None, "--clientId", "--client-id", "-c", help="OAuth2 client ID."
    ),
    scope: Optional[str] = typer.Option(
        None, "--scope", "-s", help="Space-separated scopes. [default: openid]"
    ),
    port: Optional[int] = typer.Option(
        None, "--port", "-p", help="Fixed callback port. [default: random]"
    ),
    audience: Optional[str] = typer.Option(
        None, "--audience", help="Value for the 'audience' authorization parameter."
    ),
    diagnostics: bool = typer.Option(
        False, "--diagnostics", help="Print diagnostic output to stderr."
    ),
    disable_endpoint_validation: bool = typer.Option(
        False,
        "--disable-endpoint-validation",
        help="Allow provider endpoints on a different host than the authority.",
    ),
    require_signature: bool = typer.Option(
        False,
        "--require-signature",
        help="Verify the ID token signature against the provider's JWKS.",
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the browser redirect. [default: 300]"
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    save_defaults: bool = typer.Option(
        False,
        "--save-defaults",
        help="Store the resolved settings in the user config for later runs.",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Sign in with the system browser and print the tokens as JSON.

    Resolves settings (flags, then ``OIDC_CLI_*`` environment variables,
    then the user config file), runs the login flow and exits with the
    code for its outcome.
    """
    from oidccli.config import resolve_flow_config, save_flow_defaults
    from oidccli.exceptions import OidcCliError
    from oidccli.flow import FlowOrchestrator, ResultReporter
    from oidccli.output import OutputManager, set_output

    output = OutputManager(no_color=no_color, quiet=quiet, verbose=diagnostics)
    set_output(output)
    if diagnostics:
        output.enable_library_logging()

    try:
        config = resolve_flow_config(
            authority=authority,
            client_id=client_id,
            scope=scope,
            port=port,
            audience=audience,
            timeout=timeout,
            diagnostics=diagnostics,
            disable_endpoint_validation=disable_endpoint_validation,
            require_signature=require_signature,
        )
        if save_defaults:
            output.info(f"Saved defaults to {save_flow_defaults(config)}")
    except OidcCliError as exc:
        output.error(exc.message)
        raise typer.Exit(exc.exit_code)

    if config.disable_endpoint_validation:
        output.warning(
            "Endpoint validation is relaxed; provider endpoints may be hosted "
            "on a different domain than the authority."
        )

    cancel = threading.Event()
    previous = _install_cancel_handler(cancel)
    try:
        outcome = FlowOrchestrator(output=output).run(config, cancel)
    finally:
        signal.signal(signal.SIGINT, previous)

    code = ResultReporter(output).report(outcome)
    raise typer.Exit(code)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from oidccli.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``oidc-cli`` console script.

    Unhandled :class:`~oidccli.exceptions.OidcCliError` instances cause a
    clean exit with the error's ``exit_code``. All other exceptions produce
    a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except Exception as exc:
        from oidccli.exceptions import OidcCliError
        from oidccli.output import error

        if isinstance(exc, OidcCliError):
            error(exc.message)
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
