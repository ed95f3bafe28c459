"""Single-shot loopback HTTP listener for the authorization redirect.

This module provides :class:`RedirectListener`, which binds a
:class:`~http.server.ThreadingHTTPServer` on the loopback interface, serves
it from a background thread and hands exactly one redirect back to the
waiting flow as a :class:`~oidccli.models.CallbackResult`.

State machine::

    IDLE --start()--> LISTENING --first redirect--> CAPTURED --close()--> CLOSED
                          |
                          +--cancel event--> CANCELLED
                          +--deadline------> TIMED_OUT

Only the first request to the redirect path that wins the capture latch is
accepted. Later requests to that path (browser prefetch, a duplicate tab,
a reload) get ``410 Gone``; any other path gets ``404 Not Found`` and an
unparseable request target gets ``400 Bad Request``. Neither touches the
latch.

See Also:
    :class:`oidccli.flow.orchestrator.FlowOrchestrator` for how the
    listener is started before the browser is opened and torn down on
    every exit path.
"""

from __future__ import annotations

import enum
import html
import threading
import time
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

from oidccli.exceptions import (
    ListenerCancelledError,
    ListenerTimeoutError,
    PortUnavailableError,
)
from oidccli.flow.ports import LOOPBACK_HOST
from oidccli.models import DEFAULT_REDIRECT_PATH, CallbackResult

POLL_INTERVAL = 0.1
"""Seconds between cancellation checks while waiting, and serve-loop poll interval."""

_PAGE_TEMPLATE = (
    "<!DOCTYPE html><html><head><meta charset=\"utf-8\"><title>{title}</title></head>"
    "<body><h2>{title}</h2><p>{message}</p></body></html>"
)


def _render_page(title: str, message: str) -> bytes:
    return _PAGE_TEMPLATE.format(
        title=html.escape(title), message=html.escape(message)
    ).encode("utf-8")


class ListenerState(str, enum.Enum):
    """Lifecycle states of a :class:`RedirectListener`."""

    IDLE = "idle"
    LISTENING = "listening"
    CAPTURED = "captured"
    CLOSED = "closed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


class _RedirectHandler(BaseHTTPRequestHandler):
    """Routes every GET to :meth:`RedirectListener.dispatch`."""

    server: _RedirectServer

    def do_GET(self) -> None:
        listener = self.server.listener
        status, page, result = listener.dispatch(self.path)
        try:
            self.send_response(status)
            self.send_header("Content-Type", "text/html; charset=utf-8")
            self.send_header("Content-Length", str(len(page)))
            self.send_header("Cache-Control", "no-store")
            self.send_header("Connection", "close")
            self.end_headers()
            self.wfile.write(page)
        finally:
            self.close_connection = True
            if result is not None:
                listener._publish()

    def log_message(self, format: str, *args: Any) -> None:
        # Request lines carry the authorization code and state.
        pass


class _RedirectServer(ThreadingHTTPServer):
    daemon_threads = True
    # No other socket may share the redirect port.
    allow_reuse_port = False

    def __init__(self, address: tuple[str, int], listener: RedirectListener) -> None:
        self.listener = listener
        super().__init__(address, _RedirectHandler)


class RedirectListener:
    """Accepts exactly one authorization redirect on ``127.0.0.1:{port}``.

    Usable as a context manager; leaving the block always releases the
    port, whatever the outcome::

        with RedirectListener(port) as listener:
            browser.open(url)
            result = listener.wait(timeout=300, cancel=cancel_event)

    Args:
        port: TCP port to bind on the loopback interface.
        path: Request path that counts as the redirect (default ``/``).
        host: Interface to bind; loopback unless a test says otherwise.
        clock: Monotonic clock used for the wait deadline.
    """

    def __init__(
        self,
        port: int,
        path: str = DEFAULT_REDIRECT_PATH,
        host: str = LOOPBACK_HOST,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._port = port
        self._path = path
        self._host = host
        self._clock = clock
        self._state = ListenerState.IDLE
        self._latch = threading.Lock()
        self._delivered = threading.Event()
        self._result: Optional[CallbackResult] = None
        self._server: Optional[_RedirectServer] = None
        self._thread: Optional[threading.Thread] = None
        self._started_at = 0.0

    @property
    def port(self) -> int:
        return self._port

    @property
    def path(self) -> str:
        return self._path

    @property
    def state(self) -> ListenerState:
        return self._state

    def __enter__(self) -> RedirectListener:
        if self._state is ListenerState.IDLE:
            self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Bind the port and begin serving on a daemon thread.

        Returns immediately; the deadline used by :meth:`wait` is measured
        from this call.

        Raises:
            PortUnavailableError: If the port cannot be bound.
            RuntimeError: If the listener was already started.
        """
        if self._state is not ListenerState.IDLE:
            raise RuntimeError(f"Listener cannot start from state {self._state.value}")

        try:
            server = _RedirectServer((self._host, self._port), self)
        except OSError as exc:
            raise PortUnavailableError(
                f"Cannot listen on {self._host}:{self._port}: {exc}"
            ) from exc

        self._server = server
        self._thread = threading.Thread(
            target=server.serve_forever,
            kwargs={"poll_interval": POLL_INTERVAL},
            name=f"redirect-listener-{self._port}",
            daemon=True,
        )
        self._started_at = self._clock()
        self._state = ListenerState.LISTENING
        self._thread.start()

    def wait(
        self, timeout: float, cancel: Optional[threading.Event] = None
    ) -> CallbackResult:
        """Block until the redirect arrives, the deadline passes, or *cancel* is set.

        Args:
            timeout: Seconds after :meth:`start` at which to give up.
            cancel: Optional event that requests cooperative cancellation.

        Returns:
            The captured :class:`~oidccli.models.CallbackResult`.

        Raises:
            ListenerTimeoutError: No redirect arrived before the deadline.
            ListenerCancelledError: *cancel* was set while waiting.
            RuntimeError: If the listener is not listening.
        """
        if self._state not in (ListenerState.LISTENING, ListenerState.CAPTURED):
            raise RuntimeError(f"Listener cannot wait from state {self._state.value}")

        deadline = self._started_at + timeout
        while True:
            if self._delivered.is_set():
                assert self._result is not None
                return self._result
            if cancel is not None and cancel.is_set():
                if self._seal(ListenerState.CANCELLED):
                    raise ListenerCancelledError("Authentication was cancelled")
                self._delivered.wait(POLL_INTERVAL)
                continue
            remaining = deadline - self._clock()
            if remaining <= 0:
                if not self._seal(ListenerState.TIMED_OUT):
                    # A redirect won the latch and is still being answered.
                    self._delivered.wait(POLL_INTERVAL)
                    continue
                raise ListenerTimeoutError(
                    f"No authorization response received within {timeout:g} seconds"
                )
            self._delivered.wait(min(remaining, POLL_INTERVAL))

    def close(self) -> None:
        """Stop serving and release the port. Safe to call more than once."""
        server, thread = self._server, self._thread
        self._server = None
        self._thread = None
        if server is not None:
            if thread is not None and thread.is_alive():
                server.shutdown()
                thread.join()
            server.server_close()
        if self._state in (ListenerState.LISTENING, ListenerState.CAPTURED):
            self._state = ListenerState.CLOSED

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    def dispatch(self, request_target: str) -> tuple[int, bytes, Optional[CallbackResult]]:
        """Decide the response for one inbound request.

        Called from the server's handler threads. The capture latch is
        acquired without blocking, so exactly one request to the redirect
        path can ever win.

        Args:
            request_target: The raw request target (path plus query).

        Returns:
            ``(status, page, result)`` where ``result`` is the captured
            callback for the winning request and ``None`` otherwise.
        """
        try:
            parts = urlsplit(request_target)
        except ValueError:
            return (
                HTTPStatus.BAD_REQUEST,
                _render_page("Bad request", "The request address could not be parsed."),
                None,
            )
        if parts.path != self._path:
            return (
                HTTPStatus.NOT_FOUND,
                _render_page("Not found", "This address is not part of the sign-in flow."),
                None,
            )

        if not self._latch.acquire(blocking=False):
            return (
                HTTPStatus.GONE,
                _render_page(
                    "Sign-in already handled",
                    "This sign-in request has already been completed. "
                    "You may close this window.",
                ),
                None,
            )

        result = CallbackResult.from_query(parts.query)
        self._result = result
        self._state = ListenerState.CAPTURED

        if result.is_error:
            detail = result.error_description or result.error or ""
            page = _render_page(
                "Sign-in failed",
                f"The identity provider reported an error: {detail}. "
                "You may close this window and return to the terminal.",
            )
        else:
            page = _render_page(
                "Sign-in complete",
                "You may close this window and return to the terminal.",
            )
        return HTTPStatus.OK, page, result

    def _publish(self) -> None:
        self._delivered.set()

    def _seal(self, state: ListenerState) -> bool:
        """Claim the latch so no late request is captured, then enter *state*.

        Returns ``False`` when a redirect already holds the latch.
        """
        if not self._latch.acquire(blocking=False):
            return False
        self._state = state
        return True
