"""UI collaborator boundary.

A real progress dialog (Win32, Qt, ...) implements ProgressUI and calls
``CancelToken.cancel()`` when the user closes it. Calls are fire-and-forget:
implementations hand the value to their own thread and return at once.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class ProgressUI(Protocol):
    def set_status_message(self, text: str) -> None:
        ...

    def set_progress(self, percent: Optional[int]) -> None:
        """0-100, or None for indeterminate progress."""
        ...

    def set_large_message(self, text: str) -> None:
        ...


class NullUI:
    def set_status_message(self, text: str) -> None:
        pass

    def set_progress(self, percent: Optional[int]) -> None:
        pass

    def set_large_message(self, text: str) -> None:
        pass


class ConsoleUI:
    """Reports through logging; only logs progress when the value changes."""

    def __init__(self) -> None:
        self._last: Optional[int] = -1

    def set_status_message(self, text: str) -> None:
        if text:
            logger.info("%s", text)

    def set_progress(self, percent: Optional[int]) -> None:
        if percent == self._last:
            return
        self._last = percent
        logger.info("Progress: %s", "..." if percent is None else f"{percent}%")

    def set_large_message(self, text: str) -> None:
        if text:
            logger.warning("%s", text)
