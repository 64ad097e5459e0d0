"""Leading/trailing silence trimming of a finished recording."""

from __future__ import annotations

import logging
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Optional, Tuple

import numpy as np

from .pcm import read_frames, write_wav_pcm16
from .types import TrimConfig

logger = logging.getLogger(__name__)


def find_speech_bounds(samples: np.ndarray, threshold: float) -> Optional[Tuple[int, int]]:
    """Index of the first and last sample whose |amplitude| exceeds `threshold`."""
    loud = np.flatnonzero(np.abs(samples) > threshold)
    if loud.size == 0:
        return None
    start, end = int(loud[0]), int(loud[-1])
    if end < start:
        return None
    return start, end


def trim_frames(frames: np.ndarray, sample_rate: int, cfg: TrimConfig = TrimConfig()) -> np.ndarray:
    """
    Slice `frames` down to the speech window plus padding.

    Detection runs on the first channel; every channel is sliced. Returns the
    input object itself when there is nothing to trim.
    """
    if frames.shape[0] == 0:
        return frames
    detect = frames[:, 0] if frames.ndim == 2 else frames
    bounds = find_speech_bounds(detect, cfg.amplitude_threshold)
    if bounds is None:
        return frames

    padding = int(cfg.padding_seconds * sample_rate)
    start = max(0, bounds[0] - padding)
    end = min(frames.shape[0] - 1, bounds[1] + padding)
    if end - start + 1 >= frames.shape[0]:
        return frames
    return frames[start:end + 1]


class EdgeSilenceTrimmer:
    """
    Writes a trimmed copy of a recording to a temp WAV file.

    Any failure, or a result that would not be smaller, returns the input path:
    trimming only ever saves upload time, it never decides what gets sent.
    """

    def __init__(self, cfg: TrimConfig = TrimConfig(), output_dir: Optional[Path] = None):
        self._cfg = cfg
        self._output_dir = output_dir

    def trim_silence(self, input_path: Path, cancel_event: Optional[threading.Event] = None) -> Path:
        input_path = Path(input_path)
        frames, sample_rate = read_frames(input_path)
        if cancel_event is not None and cancel_event.is_set():
            return input_path

        trimmed = trim_frames(frames, sample_rate, self._cfg)
        if trimmed is frames:
            logger.debug(f"Nothing to trim in {input_path.name}")
            return input_path
        if cancel_event is not None and cancel_event.is_set():
            return input_path

        output_dir = self._output_dir or Path(tempfile.gettempdir())
        output_path = output_dir / f"press-talk-trimmed-{uuid.uuid4()}.wav"
        samples = trimmed[:, 0] if trimmed.shape[1] == 1 else trimmed
        write_wav_pcm16(output_path, samples, sample_rate)

        original_size = input_path.stat().st_size
        trimmed_size = output_path.stat().st_size
        if trimmed_size > original_size:
            logger.info(
                f"Trimmed output larger than source ({trimmed_size} > {original_size} bytes), keeping original"
            )
            output_path.unlink(missing_ok=True)
            return input_path

        logger.info(
            f"Trimmed {frames.shape[0] - trimmed.shape[0]} of {frames.shape[0]} frames "
            f"({original_size} -> {trimmed_size} bytes)"
        )
        return output_path
