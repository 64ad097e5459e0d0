"""Reusable worker thread utilities."""

from __future__ import annotations

import threading
import queue
from typing import Generic, TypeVar

from .shutdown import StopSignal

T = TypeVar("T")


class QueueWorker(threading.Thread, Generic[T]):
    """
    Base class for a queue-consuming worker thread.

    Subclasses implement `handle(item)`. Once the stop signal is set the loop
    exits; `drain()` then hands every item still queued to `handle` so nothing
    produced before the stop is lost.
    """

    def __init__(
        self,
        *,
        name: str,
        stop_signal: StopSignal,
        input_queue: "queue.Queue[T]",
        poll_interval_s: float = 0.05,
        daemon: bool = True,
    ):
        super().__init__(name=name, daemon=daemon)
        self._stop_signal = stop_signal
        self._input_queue = input_queue
        self._poll_interval_s = poll_interval_s

    def run(self) -> None:
        while not self._stop_signal.is_set():
            try:
                item = self._input_queue.get(timeout=self._poll_interval_s)
            except queue.Empty:
                continue

            try:
                self.handle(item)
            finally:
                self._input_queue.task_done()

    def drain(self) -> None:
        while True:
            try:
                item = self._input_queue.get_nowait()
            except queue.Empty:
                return
            try:
                self.handle(item)
            finally:
                self._input_queue.task_done()

    def handle(self, item: T) -> None:
        raise NotImplementedError
