import os

import numpy as np
import pytest

from presstalk.audio.input.pcm import write_wav_pcm16

from .audio_fixtures import SAMPLE_RATE, speech_with_silence


@pytest.fixture
def setup_test_env():
    """Setup test environment variables"""
    original_env = os.environ.copy()

    for key in list(os.environ):
        if key.startswith(("OPENAI_", "TRANSCRIBE_", "TRANSPORT", "LANGUAGE_")):
            del os.environ[key]
    os.environ["OPENAI_API_KEY"] = "test_key_12345"
    os.environ["TRANSCRIBE_MODEL"] = "gpt-4o-mini-transcribe"
    os.environ["LANGUAGE_MODE"] = "zh"

    yield

    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def make_wav(tmp_path):
    """Factory writing float samples to a 16-bit WAV file under tmp_path."""
    counter = {"n": 0}

    def _make(samples, name=None, sample_rate=SAMPLE_RATE):
        counter["n"] += 1
        path = tmp_path / (name or f"take-{counter['n']}.wav")
        write_wav_pcm16(path, np.asarray(samples, dtype=np.float32), sample_rate)
        return path

    return _make


@pytest.fixture
def speech_wav(make_wav):
    """3 s take: 1 s silence, 1.5 s tone, 0.5 s silence."""
    return make_wav(speech_with_silence(), name="speech.wav")
