"""Wiring of the transcription stack from a PressTalkConfig."""

from __future__ import annotations

from typing import Callable, Optional, Tuple

import requests

from .audio.input.trimmer import EdgeSilenceTrimmer
from .config.settings import PressTalkConfig, resolve_api_key
from .core.dictation import DictationController, Recorder
from .core.events import SessionPhase
from .transcription.coordinator import TranscriptionCoordinator
from .transcription.realtime import RealtimeTranscriber
from .transcription.upload import UploadStreamingTranscriber
from .transcription.warmup import ConnectionWarmer


def build_transcription(config: PressTalkConfig) -> Tuple[TranscriptionCoordinator, ConnectionWarmer]:
    """Coordinator plus a warmer sharing the upload transport's HTTP session."""
    session = requests.Session()
    upload = UploadStreamingTranscriber(endpoint=config.transcriptions_url, session=session)
    realtime = RealtimeTranscriber(url=config.realtime_url) if config.transport == "realtime" else None
    coordinator = TranscriptionCoordinator(
        upload=upload,
        trimmer=EdgeSilenceTrimmer(),
        realtime=realtime,
        transport=config.transport,
        realtime_config=config.realtime_config(),
        fallback_to_upload=config.realtime_fallback_to_upload,
    )
    warmer = ConnectionWarmer(config.transcriptions_url, session=session)
    return coordinator, warmer


def build_dictation_controller(
    config: PressTalkConfig,
    recorder: Recorder,
    on_phase_change: Optional[Callable[[SessionPhase], None]] = None,
    on_preview: Optional[Callable[[str], None]] = None,
    on_result: Optional[Callable[[str], None]] = None,
    on_error: Optional[Callable[[str], None]] = None,
) -> Tuple[DictationController, ConnectionWarmer]:
    coordinator, warmer = build_transcription(config)
    controller = DictationController(
        recorder=recorder,
        transcription=coordinator,
        settings_provider=lambda: config,
        credential_provider=lambda: resolve_api_key(config),
        warmer=warmer,
        on_phase_change=on_phase_change,
        on_preview=on_preview,
        on_result=on_result,
        on_error=on_error,
    )
    return controller, warmer
