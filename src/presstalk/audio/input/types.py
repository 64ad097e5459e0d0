"""Audio input subsystem data types and configuration."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AudioFormat:
    """Capture format."""
    sample_rate: int = 16000
    channels: int = 1
    dtype: str = "int16"  # sounddevice dtype name


@dataclass(frozen=True)
class FrameConfig:
    """Frame-level capture configuration."""
    frame_ms: int = 30
    max_frames_queue: int = 400


@dataclass(frozen=True)
class MeterConfig:
    """Level metering cadence."""
    interval_ms: float = 90.0


@dataclass(frozen=True)
class AudioMeterSample:
    """One metering tick: RMS level in [0, 1] and its decibel value."""
    rms: float
    db_instant: float
    frame_duration_ms: float


@dataclass(frozen=True)
class SilenceDetectorConfig:
    """Auto-stop tuning. Thresholds are dBFS, durations milliseconds."""
    silence_threshold_db: float = -45.0
    silence_duration_ms: float = 1000.0
    start_guard_ms: float = 300.0
    require_speech_before_auto_stop: bool = True
    speech_activate_db: float = -32.0
    ema_alpha: float = 0.2


@dataclass(frozen=True)
class TrimConfig:
    """Edge trimming: normalized amplitude threshold and padding kept around speech."""
    amplitude_threshold: float = 0.015
    padding_seconds: float = 0.08
