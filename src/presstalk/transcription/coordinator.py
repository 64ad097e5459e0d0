"""Trim, pick a transport, transcribe, clean up."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Protocol

from ..core.events import TranscriptionRequestOptions
from .errors import AudioFileNotReadyError, TransportError
from .realtime import RealtimeConfig, RealtimeTranscriber
from .upload import UploadStreamingTranscriber

logger = logging.getLogger(__name__)

TRIM_MIN_SECONDS = 1.2
TRIM_MIN_SECONDS_COMPRESSED = 8.0
TRIM_BUDGET_S = 0.22
FILE_READY_MIN_BYTES = 1024
COMPRESSED_EXTENSIONS = frozenset({"m4a", "mp3", "mpga", "mp4", "mpeg", "webm", "ogg", "flac"})

TRANSPORT_UPLOAD = "upload"
TRANSPORT_REALTIME = "realtime"

DeltaCallback = Callable[[str], None]


class SilenceTrimmer(Protocol):
    def trim_silence(self, input_path: Path, cancel_event: Optional[threading.Event] = None) -> Path: ...


def file_size(path: Path) -> int:
    try:
        return Path(path).stat().st_size
    except OSError:
        return 0


def wait_for_stable_file(
    path: Path,
    attempts: int = 8,
    interval_s: float = 0.07,
    min_bytes: int = FILE_READY_MIN_BYTES,
) -> bool:
    """Poll until the file is above `min_bytes` and its size stopped changing."""
    previous = -1
    for attempt in range(attempts):
        size = file_size(path)
        if size > min_bytes and size == previous:
            return True
        previous = size
        if attempt < attempts - 1:
            time.sleep(interval_s)
    return False


def should_trim(path: Path, recorded_seconds: float, enabled: bool) -> bool:
    if not enabled:
        return False
    if Path(path).suffix.lower().lstrip(".") in COMPRESSED_EXTENSIONS:
        return recorded_seconds >= TRIM_MIN_SECONDS_COMPRESSED
    return recorded_seconds >= TRIM_MIN_SECONDS


class TranscriptionCoordinator:
    """
    Runs one transcription for a finished recording.

    The source file and any trimmed copy are owned by the coordinator from
    the moment `transcribe` is called and are deleted on every exit path.
    """

    def __init__(
        self,
        upload: UploadStreamingTranscriber,
        trimmer: SilenceTrimmer,
        realtime: Optional[RealtimeTranscriber] = None,
        transport: str = TRANSPORT_UPLOAD,
        realtime_config: RealtimeConfig = RealtimeConfig(),
        fallback_to_upload: bool = True,
        trim_budget_s: float = TRIM_BUDGET_S,
    ):
        self._upload = upload
        self._trimmer = trimmer
        self._realtime = realtime
        self._transport = transport
        self._realtime_config = realtime_config
        self._fallback_to_upload = fallback_to_upload
        self._trim_budget_s = trim_budget_s

    @property
    def transport(self) -> str:
        return self._transport

    async def transcribe(
        self,
        source_path: Path,
        recorded_seconds: float,
        options: TranscriptionRequestOptions,
        api_key: str,
        on_delta: Optional[DeltaCallback] = None,
    ) -> str:
        source_path = Path(source_path)
        temp_files: List[Path] = [source_path]
        try:
            size = file_size(source_path)
            if size <= FILE_READY_MIN_BYTES:
                raise AudioFileNotReadyError(source_path, size)

            upload_path = source_path
            if should_trim(source_path, recorded_seconds, options.enable_vad_trim):
                upload_path = await self._trim_within_budget(source_path)
                if upload_path != source_path:
                    temp_files.append(upload_path)

            return await self._dispatch(upload_path, options, api_key, on_delta)
        finally:
            for path in temp_files:
                try:
                    path.unlink(missing_ok=True)
                except OSError as e:
                    logger.warning(f"Could not delete temp file {path}: {e}")

    async def _trim_within_budget(self, source_path: Path) -> Path:
        loop = asyncio.get_running_loop()
        cancel_event = threading.Event()
        started = time.monotonic()
        future = loop.run_in_executor(None, self._trimmer.trim_silence, source_path, cancel_event)

        def discard_late_result(fut: "asyncio.Future[Path]") -> None:
            if fut.cancelled() or fut.exception() is not None:
                return
            result = fut.result()
            if result != source_path:
                Path(result).unlink(missing_ok=True)

        try:
            done, _ = await asyncio.wait({future}, timeout=self._trim_budget_s)
        except asyncio.CancelledError:
            cancel_event.set()
            future.add_done_callback(discard_late_result)
            raise

        if future not in done:
            cancel_event.set()
            future.add_done_callback(discard_late_result)
            logger.info(f"Trim exceeded {self._trim_budget_s * 1000:.0f} ms budget, using original audio")
            return source_path

        try:
            trimmed = future.result()
        except Exception as e:
            logger.warning(f"Silence trim failed, using original audio: {e}")
            return source_path
        logger.debug(f"Trim finished in {(time.monotonic() - started) * 1000:.0f} ms")
        return Path(trimmed)

    async def _dispatch(
        self,
        path: Path,
        options: TranscriptionRequestOptions,
        api_key: str,
        on_delta: Optional[DeltaCallback],
    ) -> str:
        if self._transport == TRANSPORT_REALTIME and self._realtime is not None:
            try:
                logger.info(f"Transcribing {path.name} via realtime ({options.model})")
                return await self._realtime.transcribe(
                    path,
                    options.model,
                    api_key,
                    prompt=options.prompt,
                    language=options.language_code,
                    config=self._realtime_config,
                    on_delta=on_delta,
                )
            except TransportError as e:
                if not (e.is_recoverable and self._fallback_to_upload):
                    raise
                logger.warning(f"Realtime transcription failed ({e}); falling back to upload")

        logger.info(f"Transcribing {path.name} via upload ({options.model})")
        return await self._upload.transcribe(
            path,
            options.model,
            api_key,
            prompt=options.prompt,
            language=options.language_code,
            on_delta=on_delta,
        )
