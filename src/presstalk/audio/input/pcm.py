"""WAV / PCM conversion helpers."""

from __future__ import annotations

import math
import wave
from pathlib import Path
from typing import Tuple, Union

import numpy as np
import soundfile as sf

PathLike = Union[str, Path]


def read_frames(path: PathLike) -> Tuple[np.ndarray, int]:
    """Decode an audio file to float32 frames shaped (n_frames, channels)."""
    data, sample_rate = sf.read(str(path), dtype="float32", always_2d=True)
    return data, int(sample_rate)


def read_mono(path: PathLike) -> Tuple[np.ndarray, int]:
    """Decode an audio file and keep the first channel."""
    frames, sample_rate = read_frames(path)
    if frames.shape[1] == 0:
        return np.zeros(0, dtype=np.float32), sample_rate
    return np.ascontiguousarray(frames[:, 0]), sample_rate


def to_pcm16_bytes(samples: np.ndarray) -> bytes:
    """Float samples in [-1, 1] to little-endian int16 bytes.

    Uses the same 1/32768 scale soundfile reads with, so a decode/encode
    round trip leaves the samples unchanged.
    """
    scaled = np.round(np.asarray(samples, dtype=np.float64) * 32768.0)
    return np.clip(scaled, -32768, 32767).astype("<i2").tobytes()


def write_wav_pcm16(path: PathLike, samples: np.ndarray, sample_rate: int) -> None:
    """Write float samples (1-D mono or (n, channels)) as a 16-bit PCM WAV file."""
    samples = np.asarray(samples, dtype=np.float32)
    channels = 1 if samples.ndim == 1 else samples.shape[1]
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(int(sample_rate))
        wf.writeframes(to_pcm16_bytes(samples))


def resample_linear(samples: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """Linear-interpolation resampling of a mono buffer."""
    samples = np.asarray(samples, dtype=np.float32)
    if src_rate == dst_rate or samples.size == 0:
        return samples
    duration = samples.size / float(src_rate)
    target_len = max(1, int(round(duration * dst_rate)))
    src_times = np.arange(samples.size, dtype=np.float64) / src_rate
    dst_times = np.arange(target_len, dtype=np.float64) / dst_rate
    return np.interp(dst_times, src_times, samples).astype(np.float32)


def decode_to_pcm16_mono(path: PathLike, target_rate: int) -> bytes:
    """Decode any soundfile-readable file to mono PCM16 at `target_rate`."""
    frames, sample_rate = read_frames(path)
    if frames.size == 0:
        return b""
    mono = frames.mean(axis=1) if frames.shape[1] > 1 else frames[:, 0]
    return to_pcm16_bytes(resample_linear(mono, sample_rate, target_rate))


def meter_level(sum_squares: float, n_samples: int) -> Tuple[float, float]:
    """RMS in [0, 1] and its dBFS value from normalized sample energy."""
    if n_samples <= 0:
        return 0.0, 20.0 * math.log10(1e-6)
    rms = min(max(math.sqrt(sum_squares / n_samples), 0.0), 1.0)
    return rms, 20.0 * math.log10(max(rms, 1e-6))
