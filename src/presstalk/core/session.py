"""Recording session lifecycle and stop arbitration."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..audio.input.silence import SilenceDebugInfo, SilenceVoiceActivityDetector
from ..audio.input.types import AudioMeterSample, SilenceDetectorConfig
from .events import StopTrigger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoStopDecision:
    should_auto_stop: bool
    debug_info: Optional[SilenceDebugInfo] = None


class RecordingSessionCoordinator:
    """
    Owns one recording session at a time.

    Manual release, the silence timer and the max-duration guard all race to
    stop the same take. `begin_stop` hands exactly one of them the stop
    sequence; everyone else gets False until `finish_stop` or `abort_stop`.
    """

    def __init__(
        self,
        detector: Optional[SilenceVoiceActivityDetector] = None,
        uptime_provider: Callable[[], float] = time.monotonic,
    ):
        self._detector = detector or SilenceVoiceActivityDetector()
        self._uptime = uptime_provider
        self._lock = threading.Lock()
        self._stop_in_progress = False
        self._auto_stop_fired = False
        self._started_at: Optional[float] = None

    @property
    def detector(self) -> SilenceVoiceActivityDetector:
        return self._detector

    @property
    def is_stop_in_progress(self) -> bool:
        with self._lock:
            return self._stop_in_progress

    @property
    def has_active_session(self) -> bool:
        with self._lock:
            return self._started_at is not None

    def begin_session(self, config: SilenceDetectorConfig) -> None:
        with self._lock:
            self._detector.reset(config)
            self._stop_in_progress = False
            self._auto_stop_fired = False
            self._started_at = self._uptime()
        logger.debug("Recording session started")

    def begin_stop(self, trigger: StopTrigger) -> bool:
        with self._lock:
            if self._stop_in_progress:
                return False
            if trigger is StopTrigger.AUTO_SILENCE:
                if self._auto_stop_fired:
                    return False
                self._auto_stop_fired = True
            self._stop_in_progress = True
        logger.info(f"Stop accepted ({trigger.name.lower()})")
        return True

    def abort_stop(self) -> None:
        with self._lock:
            self._stop_in_progress = False

    def finish_stop(self) -> None:
        with self._lock:
            self._stop_in_progress = False
            self._started_at = None

    def evaluate_auto_stop(
        self,
        sample: AudioMeterSample,
        is_enabled: bool,
        config: SilenceDetectorConfig,
    ) -> AutoStopDecision:
        with self._lock:
            if not is_enabled or self._stop_in_progress or self._started_at is None:
                return AutoStopDecision(should_auto_stop=False)

            # A monotonic clock never goes backwards, but injected providers might.
            elapsed_ms = max(0.0, self._uptime() - self._started_at) * 1000.0
            self._detector.update_config(config)
            should_stop, debug_info = self._detector.ingest(
                db_instant=sample.db_instant,
                frame_duration_ms=sample.frame_duration_ms,
                recording_elapsed_ms=elapsed_ms,
            )
        return AutoStopDecision(should_auto_stop=should_stop, debug_info=debug_info)
