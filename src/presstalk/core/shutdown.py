"""Stop signals for capture and keep-warm threads."""

import threading
from typing import Optional, Protocol


class StopSignal(Protocol):
    def is_set(self) -> bool: ...


class GracefulShutdown:
    """One-shot stop flag; each recording and each keep-warm ticker owns its own."""

    def __init__(self):
        self.stop_event = threading.Event()

    def stop(self) -> None:
        self.stop_event.set()

    def is_set(self) -> bool:
        return self.stop_event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to `timeout` seconds; True if stopped in the meantime."""
        return self.stop_event.wait(timeout)
