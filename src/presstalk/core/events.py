from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional


class SessionPhase(Enum):
    IDLE = auto()
    LISTENING = auto()
    TRANSCRIBING = auto()


class StopTrigger(Enum):
    """Who asked for the recording to stop."""
    MANUAL = auto()
    AUTO_SILENCE = auto()
    MAX_DURATION = auto()


class StreamEventKind(Enum):
    DELTA = auto()    # Incremental partial text
    DONE = auto()     # Final text
    ERROR = auto()    # Server-reported failure
    IGNORE = auto()   # Anything else (session acks, keepalives, ...)


@dataclass(frozen=True)
class StreamEvent:
    """One classified event from either transcription transport."""
    kind: StreamEventKind
    text: str = ""

    @classmethod
    def delta(cls, text: str) -> "StreamEvent":
        return cls(StreamEventKind.DELTA, text)

    @classmethod
    def done(cls, text: str) -> "StreamEvent":
        return cls(StreamEventKind.DONE, text)

    @classmethod
    def error(cls, message: str) -> "StreamEvent":
        return cls(StreamEventKind.ERROR, message)

    @classmethod
    def ignore(cls) -> "StreamEvent":
        return cls(StreamEventKind.IGNORE)


@dataclass(frozen=True)
class TranscriptionRequestOptions:
    """Per-attempt options handed to the transcription coordinator."""
    enable_vad_trim: bool
    model: str
    prompt: Optional[str] = None
    language_code: Optional[str] = None
