"""System browser launcher."""

from __future__ import annotations

import webbrowser
from typing import Callable, Optional


class BrowserLauncher:
    """Opens a URL in the user's default browser.

    Launching is best-effort: failure is reported through the return value
    and never raised, so the flow can fall back to asking the user to open
    the URL by hand.

    Args:
        opener: Callable with the signature of :func:`webbrowser.open`.
            Defaults to :func:`webbrowser.open`.
    """

    def __init__(self, opener: Optional[Callable[..., bool]] = None) -> None:
        self._opener = opener

    def open(self, url: str) -> bool:
        """Open *url* in a new browser tab.

        Returns:
            ``True`` if the OS reported a browser was started.
        """
        opener = self._opener or webbrowser.open
        try:
            return bool(opener(url, new=2))
        except (webbrowser.Error, OSError):
            return False
