"""Transcription transports, retry, event parsing and coordination."""

from .errors import (
    AudioFileNotReadyError,
    EmptyTextError,
    FileTooLargeError,
    InvalidResponseError,
    NetworkError,
    ServerError,
    TimeoutTransportError,
    TransportError,
    UnauthorizedError,
)
from .retry import RetryPolicy
from .parser import StreamEventParser
from .preview import PreviewDeltaCoalescer
from .upload import UploadStreamingTranscriber
from .realtime import RealtimeConfig, RealtimeTranscriber
from .coordinator import TranscriptionCoordinator
from .warmup import ConnectionWarmer, KeepWarmController, PrewarmGate

__all__ = [
    "AudioFileNotReadyError",
    "EmptyTextError",
    "FileTooLargeError",
    "InvalidResponseError",
    "NetworkError",
    "ServerError",
    "TimeoutTransportError",
    "TransportError",
    "UnauthorizedError",
    "RetryPolicy",
    "StreamEventParser",
    "PreviewDeltaCoalescer",
    "UploadStreamingTranscriber",
    "RealtimeConfig",
    "RealtimeTranscriber",
    "TranscriptionCoordinator",
    "ConnectionWarmer",
    "KeepWarmController",
    "PrewarmGate",
]
