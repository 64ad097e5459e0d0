"""Transcription transport error taxonomy."""

from __future__ import annotations

from typing import Optional

RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


def is_retryable_status(status: int) -> bool:
    return status in RETRYABLE_CLIENT_STATUSES or 500 <= status <= 599


class TransportError(Exception):
    """
    Base class for failures talking to the transcription service.

    `is_recoverable` decides whether a fallback path is worth trying;
    terminal errors go straight to the user.
    """

    is_recoverable = True

    @property
    def user_message(self) -> str:
        return str(self) or "Transcription failed."


class FileTooLargeError(TransportError):
    is_recoverable = False

    def __init__(self, size_bytes: int = 0, limit_bytes: int = 0):
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(f"Audio file is {size_bytes} bytes, the limit is {limit_bytes} bytes")

    @property
    def user_message(self) -> str:
        return "The recording is too large to upload (25 MB limit)."


class UnauthorizedError(TransportError):
    is_recoverable = False

    def __init__(self, message: str = "Unauthorized (401)"):
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return "The API key is invalid or not authorized (401)."


class TimeoutTransportError(TransportError):
    def __init__(self, message: str = "Request timed out"):
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return "The request timed out. Check your network and try again."


class NetworkError(TransportError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)

    @property
    def user_message(self) -> str:
        return f"Network error: {self.detail}"


class ServerError(TransportError):
    def __init__(self, status: int, message: Optional[str] = None):
        self.status = status
        self.message = message or f"Server returned HTTP {status}"
        super().__init__(f"HTTP {status}: {self.message}")

    @property
    def is_recoverable(self) -> bool:  # type: ignore[override]
        return is_retryable_status(self.status)

    @property
    def user_message(self) -> str:
        return f"Server error ({self.status}): {self.message}"


class InvalidResponseError(TransportError):
    def __init__(self, message: str = "Invalid response from server"):
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return "The server returned an invalid response."


class EmptyTextError(TransportError):
    is_recoverable = False

    def __init__(self, message: str = "Transcription returned empty text"):
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return "No speech was recognized."


class AudioFileNotReadyError(Exception):
    """The recorded file is missing or too small to be a finished take."""

    def __init__(self, path, size_bytes: int):
        self.path = path
        self.size_bytes = size_bytes
        super().__init__(f"Audio file {path} is not ready ({size_bytes} bytes)")
