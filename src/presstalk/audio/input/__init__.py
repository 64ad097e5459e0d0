"""Audio input: meter samples, silence detection and edge trimming.

Microphone capture lives in `mic` and is imported on demand, since loading
sounddevice requires the PortAudio library.
"""

from .types import AudioFormat, AudioMeterSample, FrameConfig, MeterConfig, SilenceDetectorConfig, TrimConfig
from .silence import SilenceDebugInfo, SilenceDetectorState, SilenceVoiceActivityDetector
from .trimmer import EdgeSilenceTrimmer

__all__ = [
    "AudioFormat",
    "AudioMeterSample",
    "FrameConfig",
    "MeterConfig",
    "SilenceDetectorConfig",
    "TrimConfig",
    "SilenceDebugInfo",
    "SilenceDetectorState",
    "SilenceVoiceActivityDetector",
    "EdgeSilenceTrimmer",
]
