"""PressTalk: push-to-talk dictation with OpenAI transcription."""

__version__ = "0.1.0"
