"""Decibel-based silence detection for auto-stop."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from .types import SilenceDetectorConfig

# Level reported for digital silence; also the EMA's value before the first sample.
SILENCE_FLOOR_DB = -120.0

MIN_EMA_ALPHA = 0.01
MAX_EMA_ALPHA = 1.0


@dataclass(frozen=True)
class SilenceDebugInfo:
    db_instant: float
    db_ema: float
    frame_duration_ms: float
    recording_elapsed_ms: float
    silence_accum_ms: float
    has_spoken: bool
    should_auto_stop: bool


@dataclass
class SilenceDetectorState:
    ema_db: float = SILENCE_FLOOR_DB
    initialized: bool = False
    has_spoken: bool = False
    silence_accum_ms: float = 0.0


class SilenceVoiceActivityDetector:
    """
    Turns a stream of instantaneous dB readings into an auto-stop decision.

    The reading is smoothed with an exponential moving average so single-frame
    clicks do not count as speech or reset the silence run. Silence only
    accumulates once the start guard has elapsed and, when required, once the
    smoothed level has crossed the speech activation threshold at least once.
    """

    def __init__(self, config: Optional[SilenceDetectorConfig] = None):
        self._config = config or SilenceDetectorConfig()
        self._state = SilenceDetectorState()

    @property
    def config(self) -> SilenceDetectorConfig:
        return self._config

    @property
    def state(self) -> SilenceDetectorState:
        return replace(self._state)

    def reset(self, config: Optional[SilenceDetectorConfig] = None) -> None:
        """Start a new session, optionally with new tuning."""
        if config is not None:
            self._config = config
        self._state = SilenceDetectorState()

    def update_config(self, config: SilenceDetectorConfig) -> None:
        """Swap tuning mid-session; accumulated state is kept."""
        self._config = config

    def ingest(
        self,
        db_instant: float,
        frame_duration_ms: float,
        recording_elapsed_ms: float,
    ) -> Tuple[bool, SilenceDebugInfo]:
        cfg = self._config
        state = self._state

        if math.isnan(db_instant):
            db_instant = SILENCE_FLOOR_DB
        db_instant = max(float(db_instant), SILENCE_FLOOR_DB)
        frame_duration_ms = max(0.0, float(frame_duration_ms))
        alpha = min(max(cfg.ema_alpha, MIN_EMA_ALPHA), MAX_EMA_ALPHA)

        if state.initialized:
            state.ema_db = (1.0 - alpha) * state.ema_db + alpha * db_instant
        else:
            state.ema_db = db_instant
            state.initialized = True

        if state.ema_db >= cfg.speech_activate_db:
            state.has_spoken = True

        guard_passed = recording_elapsed_ms >= cfg.start_guard_ms
        speech_ready = (not cfg.require_speech_before_auto_stop) or state.has_spoken

        if guard_passed and speech_ready:
            if state.ema_db < cfg.silence_threshold_db:
                state.silence_accum_ms += frame_duration_ms
            else:
                state.silence_accum_ms = 0.0
        else:
            state.silence_accum_ms = 0.0

        should_auto_stop = (
            guard_passed
            and speech_ready
            and state.silence_accum_ms >= cfg.silence_duration_ms
        )

        debug_info = SilenceDebugInfo(
            db_instant=db_instant,
            db_ema=state.ema_db,
            frame_duration_ms=frame_duration_ms,
            recording_elapsed_ms=recording_elapsed_ms,
            silence_accum_ms=state.silence_accum_ms,
            has_spoken=state.has_spoken,
            should_auto_stop=should_auto_stop,
        )
        return should_auto_stop, debug_info
