"""Dictation workflow errors and user-facing messages."""

from ..transcription.errors import AudioFileNotReadyError, TransportError


class RecorderError(Exception):
    """Audio capture could not start or stop."""


class MicrophoneUnavailableError(RecorderError):
    def __init__(self):
        super().__init__("Microphone is unavailable or access was denied")


class MissingAPIKeyError(Exception):
    def __init__(self):
        super().__init__("No OpenAI API key configured")


class RecordingTooShortError(Exception):
    def __init__(self, recorded_seconds: float, min_seconds: float):
        self.recorded_seconds = recorded_seconds
        self.min_seconds = min_seconds
        super().__init__(f"Recording too short ({recorded_seconds:.2f}s < {min_seconds:.2f}s)")


def user_message_for(error: BaseException) -> str:
    """Message shown to the user for a failed dictation."""
    if isinstance(error, TransportError):
        return error.user_message
    if isinstance(error, AudioFileNotReadyError):
        return "The recording was not ready yet. Please try again."
    if isinstance(error, MissingAPIKeyError):
        return "Set OPENAI_API_KEY (or openai_api_key in the config) before transcribing."
    if isinstance(error, RecordingTooShortError):
        return "Recording too short, nothing was transcribed."
    if isinstance(error, MicrophoneUnavailableError):
        return "Microphone access is unavailable. Check the input device and permissions."
    if isinstance(error, RecorderError):
        return f"Recording failed: {error}"
    return f"Transcription failed: {error}"
