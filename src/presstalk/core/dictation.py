"""Push-to-talk dictation workflow."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Protocol

from ..audio.input.silence import SilenceDebugInfo
from ..audio.input.types import AudioMeterSample
from ..config.settings import PressTalkConfig
from ..transcription.coordinator import wait_for_stable_file
from ..transcription.preview import PREVIEW_INTERVAL_S, PreviewDeltaCoalescer
from .errors import MicrophoneUnavailableError, MissingAPIKeyError, RecorderError, RecordingTooShortError, user_message_for
from .events import SessionPhase, StopTrigger, TranscriptionRequestOptions
from .session import RecordingSessionCoordinator

logger = logging.getLogger(__name__)

AUTO_STOP_DEBOUNCE_S = 0.08
DEBUG_LOG_INTERVAL_S = 0.15


class Recorder(Protocol):
    on_meter_sample: Optional[Callable[[AudioMeterSample], None]]
    last_duration: float

    def request_permission(self) -> bool: ...
    def start_recording(self) -> Path: ...
    def stop_recording(self) -> Path: ...


class Transcription(Protocol):
    async def transcribe(
        self,
        source_path: Path,
        recorded_seconds: float,
        options: TranscriptionRequestOptions,
        api_key: str,
        on_delta: Optional[Callable[[str], None]] = None,
    ) -> str: ...


class ConnectionWarmth(Protocol):
    def keep_warm(self) -> None: ...


class DictationController:
    """
    Drives one recording at a time from start to transcript.

    Every method that touches session state runs on the controller's event
    loop; the recorder's meter callback (called from its writer thread) is
    marshalled onto that loop. Results leave through plain callbacks:
    `on_preview(text)`, `on_result(text)`, `on_error(message)` and
    `on_phase_change(phase)`.
    """

    def __init__(
        self,
        recorder: Recorder,
        transcription: Transcription,
        settings_provider: Callable[[], PressTalkConfig],
        credential_provider: Callable[[], Optional[str]],
        warmer: Optional[ConnectionWarmth] = None,
        session: Optional[RecordingSessionCoordinator] = None,
        on_phase_change: Optional[Callable[[SessionPhase], None]] = None,
        on_preview: Optional[Callable[[str], None]] = None,
        on_result: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        auto_stop_debounce_s: float = AUTO_STOP_DEBOUNCE_S,
        preview_interval_s: float = PREVIEW_INTERVAL_S,
    ):
        self._recorder = recorder
        self._transcription = transcription
        self._settings_provider = settings_provider
        self._credential_provider = credential_provider
        self._warmer = warmer
        self._session = session or RecordingSessionCoordinator()
        self._on_phase_change = on_phase_change
        self._on_preview = on_preview
        self._on_result = on_result
        self._on_error = on_error
        self._auto_stop_debounce_s = auto_stop_debounce_s
        self._preview_interval_s = preview_interval_s

        self._phase = SessionPhase.IDLE
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending_auto_stop: Optional[asyncio.Task] = None
        self._max_duration_handle: Optional[asyncio.TimerHandle] = None
        self._stop_task: Optional[asyncio.Task] = None
        self._transcription_task: Optional[asyncio.Task] = None
        self._coalescer: Optional[PreviewDeltaCoalescer] = None
        self._last_debug_log_at = 0.0

        self._recorder.on_meter_sample = self._on_meter_sample_threadsafe

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def session(self) -> RecordingSessionCoordinator:
        return self._session

    @property
    def transcription_task(self) -> Optional[asyncio.Task]:
        return self._transcription_task

    async def toggle(self) -> None:
        if self._phase is SessionPhase.LISTENING:
            await self.stop_and_transcribe(StopTrigger.MANUAL)
        elif self._phase is SessionPhase.IDLE:
            await self.start_listening()

    async def begin_push_to_talk(self) -> None:
        if self._phase is SessionPhase.IDLE:
            await self.start_listening()

    async def end_push_to_talk(self) -> None:
        if self._phase is SessionPhase.LISTENING:
            await self.stop_and_transcribe(StopTrigger.MANUAL)

    async def start_listening(self) -> None:
        if self._phase is not SessionPhase.IDLE:
            logger.debug(f"start_listening ignored in phase {self._phase.name}")
            return
        self._loop = asyncio.get_running_loop()

        if not self._recorder.request_permission():
            self._report_error(MicrophoneUnavailableError())
            return

        config = self._settings_provider()
        self._cancel_pending_auto_stop()
        self._session.begin_session(config.silence_detector_config())
        try:
            self._recorder.start_recording()
        except Exception as e:
            self._session.finish_stop()
            self._report_error(e if isinstance(e, RecorderError) else RecorderError(f"Failed to start recording: {e}"))
            return

        self._set_phase(SessionPhase.LISTENING)
        self._keep_warm()
        self._max_duration_handle = self._loop.call_later(config.max_recording_seconds, self._on_max_duration)
        logger.info("Listening")

    def handle_meter_sample(self, sample: AudioMeterSample) -> None:
        if self._phase is not SessionPhase.LISTENING:
            return
        config = self._settings_provider()
        if not config.enable_auto_stop_on_silence:
            self._cancel_pending_auto_stop()
            return
        if self._pending_auto_stop is not None:
            return

        decision = self._session.evaluate_auto_stop(sample, True, config.silence_detector_config())
        if config.auto_stop_debug_logs and decision.debug_info is not None:
            self._log_auto_stop_debug(decision.debug_info)
        if not decision.should_auto_stop:
            return

        logger.info("Sustained silence detected, scheduling auto-stop")
        self._pending_auto_stop = asyncio.get_running_loop().create_task(self._auto_stop_after_debounce())

    async def stop_and_transcribe(self, trigger: StopTrigger = StopTrigger.MANUAL) -> None:
        if self._phase is not SessionPhase.LISTENING:
            return
        if not self._session.begin_stop(trigger):
            return
        self._cancel_pending_auto_stop()
        self._cancel_max_duration()

        try:
            source_path = await asyncio.to_thread(self._recorder.stop_recording)
        except Exception as e:
            self._session.abort_stop()
            self._report_error(e if isinstance(e, RecorderError) else RecorderError(f"Failed to stop recording: {e}"))
            return
        self._session.finish_stop()

        config = self._settings_provider()
        recorded_seconds = self._recorder.last_duration
        if recorded_seconds < config.min_recording_seconds:
            Path(source_path).unlink(missing_ok=True)
            self._set_phase(SessionPhase.IDLE)
            self._report_error(RecordingTooShortError(recorded_seconds, config.min_recording_seconds))
            return

        self._keep_warm()
        self._set_phase(SessionPhase.TRANSCRIBING)
        self._transcription_task = asyncio.get_running_loop().create_task(
            self._run_transcription(Path(source_path), recorded_seconds, config)
        )

    async def cancel(self) -> None:
        """Abandon the current recording or transcription without reporting an error."""
        if self._phase is SessionPhase.LISTENING:
            if not self._session.begin_stop(StopTrigger.MANUAL):
                return
            self._cancel_pending_auto_stop()
            self._cancel_max_duration()
            try:
                path = await asyncio.to_thread(self._recorder.stop_recording)
                Path(path).unlink(missing_ok=True)
            except Exception as e:
                logger.warning(f"Failed to stop recording while cancelling: {e}")
            self._session.finish_stop()
            self._set_phase(SessionPhase.IDLE)
            logger.info("Recording cancelled")
        elif self._phase is SessionPhase.TRANSCRIBING and self._transcription_task is not None:
            self._transcription_task.cancel()
            try:
                await self._transcription_task
            except asyncio.CancelledError:
                pass

    async def _run_transcription(self, source_path: Path, recorded_seconds: float, config: PressTalkConfig) -> None:
        coalescer = PreviewDeltaCoalescer(self._emit_preview, self._preview_interval_s)
        self._coalescer = coalescer
        try:
            api_key = self._credential_provider()
            if not api_key:
                source_path.unlink(missing_ok=True)
                raise MissingAPIKeyError()
            await asyncio.to_thread(wait_for_stable_file, source_path)

            started = time.monotonic()
            text = await self._transcription.transcribe(
                source_path,
                recorded_seconds,
                config.request_options(recorded_seconds),
                api_key,
                on_delta=coalescer.push,
            )
            coalescer.cancel()
            logger.info(f"Transcribed {recorded_seconds:.2f}s of audio in {time.monotonic() - started:.2f}s")
            self._emit(self._on_result, text)
        except asyncio.CancelledError:
            logger.info("Transcription cancelled")
            raise
        except Exception as e:
            self._report_error(e)
        finally:
            coalescer.cancel()
            self._coalescer = None
            self._set_phase(SessionPhase.IDLE)

    async def _auto_stop_after_debounce(self) -> None:
        await asyncio.sleep(self._auto_stop_debounce_s)
        self._pending_auto_stop = None
        await self.stop_and_transcribe(StopTrigger.AUTO_SILENCE)

    def _on_max_duration(self) -> None:
        self._max_duration_handle = None
        if self._phase is not SessionPhase.LISTENING or self._loop is None:
            return
        logger.info("Maximum recording duration reached")
        self._stop_task = self._loop.create_task(self.stop_and_transcribe(StopTrigger.MAX_DURATION))

    def _on_meter_sample_threadsafe(self, sample: AudioMeterSample) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.handle_meter_sample, sample)

    def _cancel_pending_auto_stop(self) -> None:
        task = self._pending_auto_stop
        self._pending_auto_stop = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _cancel_max_duration(self) -> None:
        if self._max_duration_handle is not None:
            self._max_duration_handle.cancel()
            self._max_duration_handle = None

    def _keep_warm(self) -> None:
        if self._warmer is None:
            return
        try:
            self._warmer.keep_warm()
        except Exception as e:
            logger.warning(f"Keep-warm failed: {e}")

    def _set_phase(self, phase: SessionPhase) -> None:
        if phase is self._phase:
            return
        self._phase = phase
        if self._on_phase_change is not None:
            self._on_phase_change(phase)

    def _emit_preview(self, text: str) -> None:
        if self._on_preview is not None:
            self._on_preview(text)

    def _emit(self, callback: Optional[Callable[[str], None]], text: str) -> None:
        if callback is not None:
            callback(text)

    def _report_error(self, error: BaseException) -> None:
        message = user_message_for(error)
        logger.error(f"Dictation failed: {error}")
        self._emit(self._on_error, message)

    def _log_auto_stop_debug(self, info: SilenceDebugInfo) -> None:
        now = time.monotonic()
        if not info.should_auto_stop and now - self._last_debug_log_at < DEBUG_LOG_INTERVAL_S:
            return
        self._last_debug_log_at = now
        logger.debug(
            f"auto-stop db={info.db_instant:.1f} ema={info.db_ema:.1f} frame={info.frame_duration_ms:.0f}ms "
            f"elapsed={info.recording_elapsed_ms:.0f}ms silence={info.silence_accum_ms:.0f}ms "
            f"spoken={info.has_spoken} stop={info.should_auto_stop}"
        )
