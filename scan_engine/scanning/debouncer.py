"""Repeat suppression for raw decode results."""

from __future__ import annotations

import time
from typing import Callable, Optional


class ScanDebouncer:
    """
    Suppresses a raw result identical to the last accepted one within
    ``interval`` seconds.

    Example:
        >>> debouncer = ScanDebouncer(0.5)
        >>> debouncer.accept("WH967843EU2ZMM")
        True
        >>> debouncer.accept("WH967843EU2ZMM")
        False
    """

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.interval = interval
        self._clock = clock
        self._last_text: Optional[str] = None
        self._last_timestamp: Optional[float] = None

    @property
    def last_accepted_text(self) -> Optional[str]:
        return self._last_text

    @property
    def last_accepted_timestamp(self) -> Optional[float]:
        return self._last_timestamp

    def accept(self, text: str) -> bool:
        """Return True and record the result if it should be forwarded."""
        now = self._clock()

        if (
            self._last_text == text
            and self._last_timestamp is not None
            and now - self._last_timestamp < self.interval
        ):
            return False

        self._last_text = text
        self._last_timestamp = now
        return True

    def reset(self) -> None:
        self._last_text = None
        self._last_timestamp = None
