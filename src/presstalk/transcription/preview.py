"""Throttling of partial-transcript updates."""

from __future__ import annotations

import functools
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

PREVIEW_INTERVAL_S = 0.08


class PreviewDeltaCoalescer:
    """
    Delivers at most one preview update per interval.

    Only the latest pushed value is kept. The first push after a flush
    schedules the next flush; pushes in between just replace the value.
    """

    def __init__(
        self,
        on_flush: Callable[[str], None],
        interval_s: float = PREVIEW_INTERVAL_S,
        timer_factory: Callable[[float, Callable[[], None]], threading.Timer] = threading.Timer,
    ):
        self._on_flush = on_flush
        self._interval_s = interval_s
        self._lock = threading.Lock()
        self._latest = ""
        self._timer_factory = timer_factory
        self._timer: Optional[threading.Timer] = None
        self._generation = 0

    def push(self, text: str) -> None:
        with self._lock:
            self._latest = text
            if self._timer is not None:
                return
            self._generation += 1
            self._timer = self._timer_factory(self._interval_s, functools.partial(self._flush, self._generation))
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        """Drop any pending value without delivering it."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._latest = ""
            self._generation += 1

    def _flush(self, generation: int) -> None:
        with self._lock:
            # A timer cancelled too late to stop must not flush for its successor.
            if generation != self._generation or self._timer is None:
                return
            value = self._latest
            self._latest = ""
            self._timer = None
        if not value:
            return
        try:
            self._on_flush(value)
        except Exception as e:
            logger.warning(f"Preview callback failed: {e}", exc_info=True)
