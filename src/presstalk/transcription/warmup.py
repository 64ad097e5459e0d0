"""Keep the TLS connection to the transcription host warm while the user is dictating."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import requests

from ..core.shutdown import GracefulShutdown

logger = logging.getLogger(__name__)

PREWARM_MIN_INTERVAL_S = 7.0
PREWARM_TIMEOUT_S = 5.0
KEEP_WARM_WINDOW_S = 20.0
KEEP_WARM_TICK_S = 8.0


class PrewarmGate:
    """Allows one prewarm at a time, and at most one per `min_interval_s`."""

    def __init__(self, min_interval_s: float = PREWARM_MIN_INTERVAL_S, clock: Callable[[], float] = time.monotonic):
        self._min_interval_s = min_interval_s
        self._clock = clock
        self._lock = threading.Lock()
        self._in_flight = False
        self._last_started_at: Optional[float] = None

    def begin_if_needed(self) -> bool:
        with self._lock:
            if self._in_flight:
                return False
            now = self._clock()
            if self._last_started_at is not None and now - self._last_started_at < self._min_interval_s:
                return False
            self._in_flight = True
            self._last_started_at = now
            return True

    def finish(self) -> None:
        with self._lock:
            self._in_flight = False


class KeepWarmController:
    """
    Rolling keep-warm window.

    `extend_window` pushes the deadline out and makes sure a ticker thread is
    running; the ticker calls `on_tick` every `tick_interval_s` and exits on
    its own once the deadline has passed.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._keep_warm_until = 0.0
        self._thread: Optional[threading.Thread] = None
        self._stop_signal: Optional[GracefulShutdown] = None

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._thread is not None

    def extend_window(self, seconds: float, tick_interval_s: float, on_tick: Callable[[], None]) -> None:
        with self._lock:
            self._keep_warm_until = max(self._keep_warm_until, self._clock() + seconds)
            if self._thread is not None:
                return
            stop_signal = GracefulShutdown()
            self._stop_signal = stop_signal
            self._thread = threading.Thread(
                target=self._run,
                args=(stop_signal, tick_interval_s, on_tick),
                name="KeepWarmThread",
                daemon=True,
            )
            self._thread.start()

    def cancel(self) -> None:
        with self._lock:
            if self._stop_signal is not None:
                self._stop_signal.stop()
            self._thread = None
            self._stop_signal = None
            self._keep_warm_until = 0.0

    def _run(self, stop_signal: GracefulShutdown, tick_interval_s: float, on_tick: Callable[[], None]) -> None:
        while not stop_signal.wait(tick_interval_s):
            with self._lock:
                if self._clock() >= self._keep_warm_until:
                    if self._stop_signal is stop_signal:
                        self._thread = None
                        self._stop_signal = None
                    return
            try:
                on_tick()
            except Exception as e:
                logger.warning(f"Keep-warm tick failed: {e}")


class ConnectionWarmer:
    """Issues HEAD requests to `url` so the real request finds an open connection."""

    def __init__(
        self,
        url: str,
        session: Optional[requests.Session] = None,
        gate: Optional[PrewarmGate] = None,
        controller: Optional[KeepWarmController] = None,
        window_s: float = KEEP_WARM_WINDOW_S,
        tick_interval_s: float = KEEP_WARM_TICK_S,
        timeout_s: float = PREWARM_TIMEOUT_S,
    ):
        self._url = url
        self._session = session or requests.Session()
        self._gate = gate or PrewarmGate()
        self._controller = controller or KeepWarmController()
        self._window_s = window_s
        self._tick_interval_s = tick_interval_s
        self._timeout_s = timeout_s

    @property
    def session(self) -> requests.Session:
        return self._session

    def prewarm(self) -> bool:
        """Fire a HEAD request in the background unless the gate says it's too soon."""
        if not self._gate.begin_if_needed():
            return False
        threading.Thread(target=self._head, name="PrewarmThread", daemon=True).start()
        return True

    def keep_warm(self) -> None:
        self.prewarm()
        self._controller.extend_window(self._window_s, self._tick_interval_s, self.prewarm)

    def close(self) -> None:
        self._controller.cancel()

    def _head(self) -> None:
        try:
            response = self._session.head(self._url, timeout=self._timeout_s)
            response.close()
            logger.debug(f"Prewarmed {self._url} ({response.status_code})")
        except requests.RequestException as e:
            logger.warning(f"Prewarm failed: {e}")
        finally:
            self._gate.finish()
