"""Tests for microphone capture, take writing and metering."""

import pytest
import queue
import time
import wave
import numpy as np
from unittest.mock import Mock, patch, MagicMock

from presstalk.audio.input.mic import Mic, AudioFrame, TakeWriter, MicRecorder
from presstalk.audio.input.types import AudioFormat, FrameConfig, MeterConfig
from presstalk.core.errors import RecorderError
from presstalk.core.shutdown import GracefulShutdown

MODULE = "presstalk.audio.input.mic"


def _capturing_input_stream():
    """Patch target for sd.InputStream that records the audio callback."""
    captured = {}
    stream_context = MagicMock()
    stream_context.__enter__ = Mock(return_value=MagicMock())
    stream_context.__exit__ = Mock(return_value=False)

    def factory(*args, **kwargs):
        captured["callback"] = kwargs.get("callback")
        captured["kwargs"] = kwargs
        return stream_context

    return captured, factory


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        time.sleep(0.01)
    return predicate()



class TestMic:
    """Test cases for Mic class."""

    @pytest.fixture
    def audio_format(self):
        return AudioFormat(sample_rate=16000, channels=1, dtype="int16")

    @pytest.fixture
    def frame_config(self):
        return FrameConfig(frame_ms=20, max_frames_queue=2)

    @pytest.fixture
    def frames_queue(self):
        return queue.Queue(maxsize=2)

    @pytest.fixture
    def stop_signal(self):
        return GracefulShutdown()

    def test_mic_captures_audio_frames(self, audio_format, frame_config, frames_queue, stop_signal):
        mic = Mic(stop_signal=stop_signal, audio_format=audio_format, frame_cfg=frame_config, frames_queue=frames_queue)
        captured, factory = _capturing_input_stream()

        with patch(f"{MODULE}.sd.InputStream", side_effect=factory):
            mic.start()
            assert _wait_for(lambda: "callback" in captured)

            data = (np.arange(320, dtype=np.int16) * 10).reshape(320, 1)
            captured["callback"](data, 320, {}, None)

            frame = frames_queue.get(timeout=1.0)
            assert isinstance(frame, AudioFrame)
            assert frame.sample_rate == 16000
            assert frame.pcm.dtype == np.int16
            assert frame.pcm.shape == (320,)
            np.testing.assert_array_equal(frame.pcm, data[:, 0])

            stop_signal.stop()
            mic.join(timeout=1.0)

        assert not mic.is_alive()
        assert mic.error is None
        assert captured["kwargs"]["blocksize"] == 320
        assert captured["kwargs"]["dtype"] == "int16"

    def test_full_queue_drops_frames(self, audio_format, frame_config, frames_queue, stop_signal):
        mic = Mic(stop_signal=stop_signal, audio_format=audio_format, frame_cfg=frame_config, frames_queue=frames_queue)
        captured, factory = _capturing_input_stream()

        with patch(f"{MODULE}.sd.InputStream", side_effect=factory):
            mic.start()
            assert _wait_for(lambda: "callback" in captured)
            block = np.zeros((320, 1), dtype=np.int16)
            for _ in range(5):
                captured["callback"](block, 320, {}, None)
            stop_signal.stop()
            mic.join(timeout=1.0)

        assert frames_queue.qsize() == 2

    def test_stream_error_is_recorded(self, audio_format, frame_config, frames_queue, stop_signal):
        mic = Mic(stop_signal=stop_signal, audio_format=audio_format, frame_cfg=frame_config, frames_queue=frames_queue)
        with patch(f"{MODULE}.sd.InputStream", side_effect=OSError("no default input device")):
            mic.start()
            mic.join(timeout=1.0)
        assert isinstance(mic.error, OSError)


class TestTakeWriter:
    def test_writes_wav_and_emits_meter_samples(self, tmp_path):
        frames_queue = queue.Queue()
        stop_signal = GracefulShutdown()
        samples = []
        path = tmp_path / "take.wav"
        writer = TakeWriter(
            stop_signal=stop_signal,
            frames_queue=frames_queue,
            path=path,
            audio_format=AudioFormat(),
            meter_cfg=MeterConfig(interval_ms=20.0),
            on_meter_sample=samples.append,
        )
        writer.start()

        loud = np.full(480, 16384, dtype=np.int16)
        for _ in range(4):
            frames_queue.put(AudioFrame(pcm=loud, sample_rate=16000, timestamp_s=time.time()))
            time.sleep(0.03)
        stop_signal.stop()
        writer.join(timeout=2.0)

        assert writer.frames_written == 4 * 480
        with wave.open(str(path), "rb") as wf:
            assert wf.getnchannels() == 1
            assert wf.getsampwidth() == 2
            assert wf.getframerate() == 16000
            assert wf.getnframes() == 4 * 480

        assert len(samples) >= 2
        assert samples[0].frame_duration_ms == pytest.approx(20.0)
        assert samples[0].rms == pytest.approx(0.5)
        assert samples[0].db_instant == pytest.approx(-6.02, abs=0.01)
        assert samples[1].frame_duration_ms > 0

    def test_callback_failure_does_not_stop_writer(self, tmp_path):
        frames_queue = queue.Queue()
        stop_signal = GracefulShutdown()
        writer = TakeWriter(
            stop_signal=stop_signal,
            frames_queue=frames_queue,
            path=tmp_path / "take.wav",
            audio_format=AudioFormat(),
            meter_cfg=MeterConfig(interval_ms=0.0),
            on_meter_sample=Mock(side_effect=RuntimeError("listener gone")),
        )
        writer.start()
        for _ in range(3):
            frames_queue.put(AudioFrame(pcm=np.ones(160, dtype=np.int16), sample_rate=16000, timestamp_s=0.0))
        assert _wait_for(lambda: writer.frames_written == 480)
        stop_signal.stop()
        writer.join(timeout=2.0)


    def test_frame_outside_run_is_rejected(self, tmp_path):
        writer = TakeWriter(
            stop_signal=GracefulShutdown(),
            frames_queue=queue.Queue(),
            path=tmp_path / "take.wav",
            audio_format=AudioFormat(),
        )
        with pytest.raises(RecorderError, match="not running"):
            writer.handle(AudioFrame(pcm=np.ones(160, dtype=np.int16), sample_rate=16000, timestamp_s=0.0))
        assert writer.frames_written == 0

class TestMicRecorder:
    def test_start_and_stop(self, tmp_path):
        captured, factory = _capturing_input_stream()
        recorder = MicRecorder(output_dir=tmp_path)
        meter_samples = []
        recorder.on_meter_sample = meter_samples.append

        with patch(f"{MODULE}.sd.InputStream", side_effect=factory):
            path = recorder.start_recording()
            assert recorder.is_recording
            assert path.parent == tmp_path
            assert path.name.startswith("press-talk-")
            assert _wait_for(lambda: "callback" in captured)

            block = np.full((480, 1), 8000, dtype=np.int16)
            for _ in range(10):
                captured["callback"](block, 480, {}, None)
                time.sleep(0.015)

            result = recorder.stop_recording()

        assert result == path
        assert not recorder.is_recording
        assert recorder.last_duration > 0
        with wave.open(str(path), "rb") as wf:
            assert wf.getnframes() == 10 * 480
        assert meter_samples

    def test_stop_without_start(self):
        with pytest.raises(RecorderError):
            MicRecorder().stop_recording()

    def test_double_start(self, tmp_path):
        captured, factory = _capturing_input_stream()
        recorder = MicRecorder(output_dir=tmp_path)
        with patch(f"{MODULE}.sd.InputStream", side_effect=factory):
            recorder.start_recording()
            with pytest.raises(RecorderError):
                recorder.start_recording()
            recorder.stop_recording()

    def test_device_failure_surfaces_on_stop(self, tmp_path):
        recorder = MicRecorder(output_dir=tmp_path)
        with patch(f"{MODULE}.sd.InputStream", side_effect=OSError("device unplugged")):
            path = recorder.start_recording()
            time.sleep(0.05)
            with pytest.raises(RecorderError, match="device unplugged"):
                recorder.stop_recording()
        assert not path.exists()

    def test_request_permission(self):
        recorder = MicRecorder()
        with patch(f"{MODULE}.sd.check_input_settings") as check:
            assert recorder.request_permission() is True
            check.assert_called_once_with(device=None, channels=1, dtype="int16", samplerate=16000)
        with patch(f"{MODULE}.sd.check_input_settings", side_effect=Exception("Invalid device")):
            assert recorder.request_permission() is False
