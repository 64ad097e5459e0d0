"""Microphone capture to a temporary WAV file with level metering."""

from __future__ import annotations

import logging
import queue
import tempfile
import threading
import time
import uuid
import wave
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import numpy as np
import sounddevice as sd

from ...core.errors import RecorderError
from ...core.shutdown import GracefulShutdown, StopSignal
from ...core.worker import QueueWorker
from .pcm import meter_level
from .types import AudioFormat, AudioMeterSample, FrameConfig, MeterConfig

logger = logging.getLogger(__name__)

MeterCallback = Callable[[AudioMeterSample], None]


@dataclass
class AudioFrame:
    """Single audio frame from microphone."""
    pcm: np.ndarray          # shape: (n_samples,) int16
    sample_rate: int
    timestamp_s: float


class Mic(threading.Thread):
    """
    Continuously captures microphone audio and pushes AudioFrame into frames_queue.

    Keep the callback lightweight; writing and metering happen in TakeWriter.
    """

    def __init__(
        self,
        stop_signal: StopSignal,
        audio_format: AudioFormat,
        frame_cfg: FrameConfig,
        frames_queue: "queue.Queue[AudioFrame]",
        device: Optional[int] = None,
    ):
        super().__init__(name="MicThread", daemon=True)
        self._stop_signal = stop_signal
        self._audio_format = audio_format
        self._frame_cfg = frame_cfg
        self._frames_queue = frames_queue
        self._device = device
        self.error: Optional[BaseException] = None

    def run(self) -> None:
        blocksize = int(self._audio_format.sample_rate * self._frame_cfg.frame_ms / 1000)

        def audio_callback(indata, frames, time_info, status):
            if status:
                logger.warning(f"Audio callback status: {status}")

            # indata shape is (frames, channels); keep the first channel
            pcm = indata[:, 0].copy() if indata.ndim == 2 else indata.copy()
            frame = AudioFrame(
                pcm=pcm.astype(np.int16, copy=False),
                sample_rate=self._audio_format.sample_rate,
                timestamp_s=time.time(),
            )
            try:
                self._frames_queue.put_nowait(frame)
            except queue.Full:
                logger.warning("Frames queue is full, dropping audio frame")

        try:
            with sd.InputStream(
                callback=audio_callback,
                samplerate=self._audio_format.sample_rate,
                channels=self._audio_format.channels,
                blocksize=blocksize,
                dtype=self._audio_format.dtype,
                device=self._device,
            ):
                while not self._stop_signal.is_set():
                    time.sleep(0.02)
        except Exception as e:
            self.error = e
            logger.error(f"Error in microphone capture: {e}", exc_info=True)
        finally:
            logger.info("Microphone capture stopped")


class TakeWriter(QueueWorker[AudioFrame]):
    """Writes captured frames to a WAV file and emits meter samples on a fixed cadence."""

    def __init__(
        self,
        *,
        stop_signal: StopSignal,
        frames_queue: "queue.Queue[AudioFrame]",
        path: Path,
        audio_format: AudioFormat,
        meter_cfg: MeterConfig = MeterConfig(),
        on_meter_sample: Optional[MeterCallback] = None,
    ):
        super().__init__(name="TakeWriterThread", stop_signal=stop_signal, input_queue=frames_queue)
        self._path = path
        self._audio_format = audio_format
        self._meter_cfg = meter_cfg
        self._on_meter_sample = on_meter_sample
        self._wav: Optional[wave.Wave_write] = None
        self._sum_squares = 0.0
        self._n_samples = 0
        self._window_started_at = time.monotonic()
        self._last_emitted_at: Optional[float] = None
        self.frames_written = 0

    def run(self) -> None:
        with wave.open(str(self._path), "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)
            wav.setframerate(self._audio_format.sample_rate)
            self._wav = wav
            try:
                super().run()
                self.drain()
            finally:
                self._wav = None

    def handle(self, item: AudioFrame) -> None:
        if self._wav is None:
            raise RecorderError("Take writer is not running")
        pcm = np.asarray(item.pcm, dtype=np.int16)
        self._wav.writeframes(pcm.astype("<i2").tobytes())
        self.frames_written += pcm.size

        normalized = pcm.astype(np.float64) / 32768.0
        self._sum_squares += float(np.dot(normalized, normalized))
        self._n_samples += pcm.size

        now = time.monotonic()
        if (now - self._window_started_at) * 1000.0 >= self._meter_cfg.interval_ms:
            self._emit(now)

    def _emit(self, now: float) -> None:
        rms, db = meter_level(self._sum_squares, self._n_samples)
        if self._last_emitted_at is None:
            frame_duration_ms = self._meter_cfg.interval_ms
        else:
            frame_duration_ms = (now - self._last_emitted_at) * 1000.0
        self._last_emitted_at = now
        self._window_started_at = now
        self._sum_squares = 0.0
        self._n_samples = 0

        if self._on_meter_sample is None:
            return
        try:
            self._on_meter_sample(AudioMeterSample(rms=rms, db_instant=db, frame_duration_ms=frame_duration_ms))
        except Exception as e:
            logger.warning(f"Meter sample callback failed: {e}", exc_info=True)


class MicRecorder:
    """
    Push-to-talk capture service.

    Two threads per take: Mic (device -> frames queue) and TakeWriter
    (frames queue -> WAV file + meter samples). Stopping joins the mic first so
    the writer drains every captured frame before the file is closed.
    """

    def __init__(
        self,
        audio_format: AudioFormat = AudioFormat(),
        frame_cfg: FrameConfig = FrameConfig(),
        meter_cfg: MeterConfig = MeterConfig(),
        device: Optional[int] = None,
        output_dir: Optional[Path] = None,
    ):
        self._audio_format = audio_format
        self._frame_cfg = frame_cfg
        self._meter_cfg = meter_cfg
        self._device = device
        self._output_dir = output_dir
        self.on_meter_sample: Optional[MeterCallback] = None

        self._mic: Optional[Mic] = None
        self._writer: Optional[TakeWriter] = None
        self._mic_signal: Optional[GracefulShutdown] = None
        self._writer_signal: Optional[GracefulShutdown] = None
        self._path: Optional[Path] = None
        self._started_at: Optional[float] = None
        self.last_duration = 0.0

    @property
    def is_recording(self) -> bool:
        return self._mic is not None

    def request_permission(self) -> bool:
        try:
            sd.check_input_settings(
                device=self._device,
                channels=self._audio_format.channels,
                dtype=self._audio_format.dtype,
                samplerate=self._audio_format.sample_rate,
            )
        except Exception as e:
            logger.warning(f"Microphone unavailable: {e}")
            return False
        return True

    def start_recording(self) -> Path:
        if self.is_recording:
            raise RecorderError("Recording already in progress")

        output_dir = self._output_dir or Path(tempfile.gettempdir())
        path = output_dir / f"press-talk-{uuid.uuid4()}.wav"
        frames_queue: "queue.Queue[AudioFrame]" = queue.Queue(maxsize=self._frame_cfg.max_frames_queue)

        self._mic_signal = GracefulShutdown()
        self._writer_signal = GracefulShutdown()
        self._writer = TakeWriter(
            stop_signal=self._writer_signal,
            frames_queue=frames_queue,
            path=path,
            audio_format=self._audio_format,
            meter_cfg=self._meter_cfg,
            on_meter_sample=self._forward_meter_sample,
        )
        self._mic = Mic(
            stop_signal=self._mic_signal,
            audio_format=self._audio_format,
            frame_cfg=self._frame_cfg,
            frames_queue=frames_queue,
            device=self._device,
        )
        self._path = path
        self._started_at = time.monotonic()
        self._writer.start()
        self._mic.start()
        logger.info(f"Recording to {path}")
        return path

    def stop_recording(self) -> Path:
        if self._mic is None or self._writer is None or self._path is None:
            raise RecorderError("Not recording")

        mic, writer, path = self._mic, self._writer, self._path
        self._mic_signal.stop()
        mic.join(timeout=2.0)
        self._writer_signal.stop()
        writer.join(timeout=2.0)

        self.last_duration = max(0.0, time.monotonic() - (self._started_at or time.monotonic()))
        self._mic = None
        self._writer = None
        self._path = None
        self._started_at = None

        if mic.error is not None:
            path.unlink(missing_ok=True)
            raise RecorderError(f"Microphone capture failed: {mic.error}")
        logger.info(f"Recording stopped after {self.last_duration:.2f}s ({writer.frames_written} samples)")
        return path

    def _forward_meter_sample(self, sample: AudioMeterSample) -> None:
        callback = self.on_meter_sample
        if callback is not None:
            callback(sample)
