"""Single-slot holder for user input typed while a run is in flight.

The agent is launched with stdin closed, so nothing can be piped into a
running process. Input that arrives mid-run is parked here and, once the
run finishes, resubmitted as a new run resuming the same agent session.
"""
from __future__ import annotations

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class InputQueue:
    """Holds at most one pending message; the newest offer wins."""

    def __init__(self, is_running: Callable[[], bool]) -> None:
        self._is_running = is_running
        self._pending: str | None = None

    def offer(self, text: str) -> bool:
        """Park *text* if a run is in progress.

        Returns False when idle (the caller should start a run instead)
        or when *text* is blank.
        """
        if not text or not text.strip():
            return False
        if not self._is_running():
            logger.debug("Cannot queue input - no active run")
            return False
        if self._pending is not None:
            logger.info("Replacing queued input (%d chars)", len(self._pending))
        self._pending = text
        logger.info("Queued input for follow-up: %.50s", text)
        return True

    def take(self) -> str | None:
        """Return the pending message and clear the slot."""
        text, self._pending = self._pending, None
        return text

    def peek(self) -> str | None:
        return self._pending

    @property
    def has_pending(self) -> bool:
        return self._pending is not None
