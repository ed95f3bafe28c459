"""Loopback port allocation for the redirect URI."""

from __future__ import annotations

import socket

from oidccli.exceptions import PortUnavailableError

LOOPBACK_HOST = "127.0.0.1"


class PortAllocator:
    """Picks a free TCP port on the loopback interface.

    The OS assigns the port when binding to port 0; the socket is closed
    straight away so that :class:`~oidccli.flow.listener.RedirectListener`
    can bind it. Another process could grab the port in between, in which
    case the listener fails to bind and reports ``PORT_UNAVAILABLE``.
    """

    def __init__(self, host: str = LOOPBACK_HOST) -> None:
        self._host = host

    def allocate(self) -> int:
        """Return a port number the OS considered free a moment ago.

        Raises:
            PortUnavailableError: If the OS refuses even an ephemeral bind.
        """
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind((self._host, 0))
                return s.getsockname()[1]
        except OSError as exc:
            raise PortUnavailableError(
                f"Could not allocate a local port on {self._host}: {exc}"
            ) from exc
