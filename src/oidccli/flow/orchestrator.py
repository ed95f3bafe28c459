"""Authorization Code + PKCE flow orchestration.

:class:`FlowOrchestrator` ties the flow components together for one
authentication attempt:

1. Resolve the callback port (fixed or allocated) and the redirect URI.
2. Generate the PKCE verifier/challenge, state and nonce.
3. Fetch the provider's discovery document.
4. Build the authorization URL.
5. Start the :class:`~oidccli.flow.listener.RedirectListener`.
6. Open the browser (only once the listener is listening).
7. Wait for the redirect, bounded by the configured timeout.
8. Check the redirect for a provider error, then the state.
9. Exchange the code, validate the ID token and build the result.

Every failure is fatal to the attempt and is returned as a single
:class:`~oidccli.models.FlowError`; nothing is retried.
"""

from __future__ import annotations

import secrets
import threading
from typing import Callable, Optional

from oidccli.exceptions import (
    BrowserLaunchFailedError,
    ListenerCancelledError,
    OidcCliError,
    ProviderError,
    StateMismatchError,
)
from oidccli.flow.browser import BrowserLauncher
from oidccli.flow.listener import RedirectListener
from oidccli.flow.pkce import PkceChallengeGenerator
from oidccli.flow.ports import PortAllocator
from oidccli.models import (
    AuthorizationRequest,
    CallbackResult,
    Claim,
    FlowConfig,
    FlowError,
    FlowOutcome,
    FlowSuccess,
    TokenResult,
)
from oidccli.oidc.client import (
    build_authorization_url,
    build_token_result,
    claims_from_payload,
    exchange_code,
    validate_identity_token,
)
from oidccli.oidc.discovery import DiscoveryPolicy, fetch_discovery_document
from oidccli.output import OutputManager, get_output


def redirect_uri_for(port: int, path: str = "/") -> str:
    """Return the loopback redirect URI registered with the provider."""
    if path == "/":
        return f"http://localhost:{port}"
    return f"http://localhost:{port}{path}"


class FlowOrchestrator:
    """Runs one interactive OIDC login from start to finish.

    Collaborators are injectable so tests can substitute the browser, the
    port source or the listener without touching the network.

    Args:
        output: Logging collaborator; debug messages only appear when it
            was created with diagnostics enabled.
        port_allocator: Source of a free port when none is configured.
        pkce_generator: Source of PKCE, state and nonce values.
        browser: Opens the authorization URL.
        listener_factory: Builds the redirect listener from
            ``(port, path)``.
    """

    def __init__(
        self,
        output: Optional[OutputManager] = None,
        port_allocator: Optional[PortAllocator] = None,
        pkce_generator: Optional[PkceChallengeGenerator] = None,
        browser: Optional[BrowserLauncher] = None,
        listener_factory: Callable[[int, str], RedirectListener] = RedirectListener,
    ) -> None:
        self._output = output or get_output()
        self._ports = port_allocator or PortAllocator()
        self._pkce = pkce_generator or PkceChallengeGenerator()
        self._browser = browser or BrowserLauncher()
        self._listener_factory = listener_factory

    def run(
        self, config: FlowConfig, cancel: Optional[threading.Event] = None
    ) -> FlowOutcome:
        """Authenticate the user and return the terminal outcome.

        Args:
            config: Resolved settings for this attempt.
            cancel: Event that cancels the flow cooperatively when set.

        Returns:
            :class:`~oidccli.models.FlowSuccess` with the tokens, or
            :class:`~oidccli.models.FlowError` with the error kind and a
            human-readable message.
        """
        cancel = cancel or threading.Event()
        try:
            token = self._authenticate(config, cancel)
        except OidcCliError as exc:
            self._output.debug(f"Flow ended with {exc.kind.value}")
            return FlowError(kind=exc.kind, message=exc.message)
        return FlowSuccess(token=token)

    def _authenticate(self, config: FlowConfig, cancel: threading.Event) -> TokenResult:
        port = config.port if config.port is not None else self._ports.allocate()
        redirect_uri = redirect_uri_for(port, config.redirect_path)
        self._output.debug(f"Using redirect URI {redirect_uri}")

        pkce = self._pkce.generate()
        extra_params: dict[str, str] = {}
        if config.audience:
            extra_params["audience"] = config.audience

        request = AuthorizationRequest(
            authority=config.authority,
            client_id=config.client_id,
            scope=config.scopes,
            redirect_uri=redirect_uri,
            state=pkce.state,
            nonce=pkce.nonce,
            code_verifier=pkce.code_verifier,
            code_challenge=pkce.code_challenge,
            code_challenge_method=pkce.code_challenge_method,
            extra_params=extra_params,
        )

        if config.disable_endpoint_validation:
            policy = DiscoveryPolicy.relaxed()
            self._output.debug(
                "Endpoint validation relaxed for: "
                + ", ".join(policy.endpoint_validation_excludes)
            )
        else:
            policy = DiscoveryPolicy()

        self._output.debug(f"Fetching discovery document for {config.authority}")
        metadata = fetch_discovery_document(config.authority, policy)
        self._check_cancelled(cancel)
        self._output.debug(f"Authorization endpoint: {metadata.authorization_endpoint}")
        self._output.debug(f"Token endpoint: {metadata.token_endpoint}")

        authorize_url = build_authorization_url(metadata, request)

        with self._listener_factory(port, config.redirect_path) as listener:
            self._output.debug(f"Listening for the redirect on port {listener.port}")
            try:
                self._open_browser(authorize_url)
            except BrowserLaunchFailedError as exc:
                self._output.warning(exc.message)
            else:
                self._output.progress(
                    "Opened your browser to sign in. Waiting for the redirect..."
                )
            callback = listener.wait(config.timeout, cancel)
        self._output.debug("Authorization response received")

        code = self._check_callback(callback, request)

        self._output.debug("Exchanging authorization code for tokens")
        token_data = exchange_code(metadata, request, code)
        self._check_cancelled(cancel)

        claims: list[Claim] = []
        id_token = token_data.get("id_token")
        if id_token:
            payload = validate_identity_token(
                id_token,
                metadata,
                request,
                require_signature=config.require_id_token_signature,
            )
            claims = claims_from_payload(payload)
            self._output.debug(f"ID token validated ({len(claims)} claims)")
        else:
            self._output.debug("Token response has no ID token")

        return build_token_result(token_data, claims)

    def _open_browser(self, url: str) -> None:
        if not self._browser.open(url):
            raise BrowserLaunchFailedError(
                f"Could not open a browser. Open this URL to sign in: {url}"
            )

    def _check_callback(
        self, callback: CallbackResult, request: AuthorizationRequest
    ) -> str:
        """Return the authorization code, or raise for an unusable redirect.

        A provider error is reported first, then the state is compared in
        constant time. A mismatch is treated as a possible CSRF attempt.
        """
        if callback.is_error:
            raise ProviderError(callback.error_description or callback.error or "")

        received = callback.received_state
        if received is None or not secrets.compare_digest(
            received.encode("utf-8"), request.state.encode("utf-8")
        ):
            raise StateMismatchError(
                "The state returned by the provider does not match the request "
                "(possible cross-site request forgery); authentication aborted"
            )

        if not callback.authorization_code:
            raise ProviderError("The authorization response did not include a code")
        return callback.authorization_code

    @staticmethod
    def _check_cancelled(cancel: threading.Event) -> None:
        if cancel.is_set():
            raise ListenerCancelledError("Authentication was cancelled")
