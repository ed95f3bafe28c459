"""Render a flow outcome for the user and pick the process exit code.

A success prints the token record as JSON on stdout, with camelCase keys::

    {
      "idToken": "...",
      "accessToken": "...",
      "refreshToken": "...",
      "expiresAt": "2026-01-01T12:00:00Z",
      "claims": [{"type": "sub", "value": "alice"}]
    }

A failure prints a single error message on stderr and nothing on stdout.
"""

from __future__ import annotations

from typing import Any, Optional

from oidccli.exceptions import exit_code_for
from oidccli.exit_codes import EXIT_SUCCESS
from oidccli.models import FlowError, FlowOutcome, FlowSuccess
from oidccli.output import OutputManager, get_output


class ResultReporter:
    """Writes a :data:`~oidccli.models.FlowOutcome` to the terminal."""

    def __init__(self, output: Optional[OutputManager] = None) -> None:
        self._output = output or get_output()

    def build_record(self, outcome: FlowOutcome) -> Optional[dict[str, Any]]:
        """Return the JSON-ready token record, or ``None`` for a failure."""
        if not isinstance(outcome, FlowSuccess):
            return None
        return outcome.token.model_dump(mode="json", by_alias=True, exclude_none=True)

    def report(self, outcome: FlowOutcome) -> int:
        """Print *outcome* and return the exit code for it."""
        record = self.build_record(outcome)
        if record is not None:
            self._output.print_json(record)
            return EXIT_SUCCESS

        assert isinstance(outcome, FlowError)
        self._output.error(outcome.message)
        return exit_code_for(outcome.kind)
