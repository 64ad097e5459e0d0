import os
from pathlib import Path
from typing import Literal, Optional
from pydantic import BaseModel, Field, ConfigDict
from dotenv import load_dotenv
import logging

from ..audio.input.types import SilenceDetectorConfig
from ..core.events import TranscriptionRequestOptions
from ..transcription.realtime import RealtimeConfig

logger = logging.getLogger(__name__)

TranscribeModel = Literal["gpt-4o-mini-transcribe", "gpt-4o-transcribe"]
Transport = Literal["upload", "realtime"]
LanguageMode = Literal["auto", "zh", "en"]


class PressTalkConfig(BaseModel):
    openai_api_key: str = Field(default="", description="OpenAI API key; falls back to OPENAI_API_KEY at transcription time")
    api_base_url: str = Field(default="https://api.openai.com", description="OpenAI REST base URL")
    realtime_url: str = Field(default="wss://api.openai.com/v1/realtime?intent=transcription", description="Realtime transcription WebSocket URL")
    model: TranscribeModel = Field(default="gpt-4o-mini-transcribe", description="Transcription model")
    transport: Transport = Field(default="upload", description="Transcription transport (upload, realtime)")
    realtime_fallback_to_upload: bool = Field(default=True, description="Retry through upload when realtime fails recoverably")
    language_mode: LanguageMode = Field(default="auto", description="Language hint (auto, zh, en)")
    custom_prompt: str = Field(default="", description="Prompt passed to the transcription model")
    prompt_enabled: bool = Field(default=True, description="Whether custom_prompt is sent")
    prompt_min_duration_seconds: float = Field(default=1.0, ge=0, description="Recordings shorter than this are sent without a prompt")
    enable_vad_trim: bool = Field(default=True, description="Trim leading/trailing silence before upload")
    enable_auto_stop_on_silence: bool = Field(default=True, description="Stop recording after sustained silence")
    auto_stop_debug_logs: bool = Field(default=False, description="Log per-sample silence detector state")
    silence_threshold_db: float = Field(default=-45.0, description="Smoothed level below which a frame counts as silence (dBFS)")
    silence_duration_ms: float = Field(default=1000.0, gt=0, description="Silence needed before auto-stop (ms)")
    auto_stop_start_guard_ms: float = Field(default=300.0, ge=0, description="No auto-stop during the first N ms")
    require_speech_before_auto_stop: bool = Field(default=True, description="Only auto-stop after speech was detected")
    speech_activate_threshold_db: float = Field(default=-32.0, description="Smoothed level that counts as speech (dBFS)")
    ema_alpha: float = Field(default=0.2, gt=0, le=1, description="Level smoothing factor")
    max_recording_seconds: float = Field(default=120.0, gt=0, description="Hard cap on a single recording")
    min_recording_seconds: float = Field(default=0.2, ge=0, description="Shorter recordings are discarded")
    realtime_silence_duration_ms: int = Field(default=600, ge=0, description="Server VAD silence duration for realtime")
    realtime_prefix_padding_ms: int = Field(default=240, ge=0, description="Server VAD prefix padding for realtime")
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = ConfigDict(validate_assignment=True)

    @property
    def transcriptions_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/v1/audio/transcriptions"

    @property
    def preferred_language_code(self) -> Optional[str]:
        return None if self.language_mode == "auto" else self.language_mode

    def effective_prompt(self, recorded_seconds: float) -> Optional[str]:
        if not self.prompt_enabled:
            return None
        prompt = self.custom_prompt.strip()
        if not prompt or recorded_seconds < self.prompt_min_duration_seconds:
            return None
        return prompt

    def silence_detector_config(self) -> SilenceDetectorConfig:
        return SilenceDetectorConfig(
            silence_threshold_db=self.silence_threshold_db,
            silence_duration_ms=self.silence_duration_ms,
            start_guard_ms=self.auto_stop_start_guard_ms,
            require_speech_before_auto_stop=self.require_speech_before_auto_stop,
            speech_activate_db=self.speech_activate_threshold_db,
            ema_alpha=self.ema_alpha,
        )

    def realtime_config(self) -> RealtimeConfig:
        return RealtimeConfig(
            silence_duration_ms=self.realtime_silence_duration_ms,
            prefix_padding_ms=self.realtime_prefix_padding_ms,
        )

    def request_options(self, recorded_seconds: float) -> TranscriptionRequestOptions:
        return TranscriptionRequestOptions(
            enable_vad_trim=self.enable_vad_trim,
            model=self.model,
            prompt=self.effective_prompt(recorded_seconds),
            language_code=self.preferred_language_code,
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def load_config(config_path: Optional[Path] = None) -> PressTalkConfig:
    if config_path is None:
        config_path = Path(".env")

    if config_path.exists():
        load_dotenv(config_path)
        logger.info(f"Loaded environment variables from {config_path}")
    else:
        logger.warning(f"Config file {config_path} not found, using environment variables only")

    try:
        return PressTalkConfig(
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            api_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com"),
            realtime_url=os.getenv("REALTIME_URL", "wss://api.openai.com/v1/realtime?intent=transcription"),
            model=os.getenv("TRANSCRIBE_MODEL", "gpt-4o-mini-transcribe"),
            transport=os.getenv("TRANSPORT", "upload"),
            realtime_fallback_to_upload=_env_bool("REALTIME_FALLBACK_TO_UPLOAD", True),
            language_mode=os.getenv("LANGUAGE_MODE", "auto"),
            custom_prompt=os.getenv("CUSTOM_PROMPT", ""),
            prompt_enabled=_env_bool("PROMPT_ENABLED", True),
            prompt_min_duration_seconds=float(os.getenv("PROMPT_MIN_DURATION_SECONDS", "1.0")),
            enable_vad_trim=_env_bool("ENABLE_VAD_TRIM", True),
            enable_auto_stop_on_silence=_env_bool("ENABLE_AUTO_STOP_ON_SILENCE", True),
            auto_stop_debug_logs=_env_bool("AUTO_STOP_DEBUG_LOGS", False),
            silence_threshold_db=float(os.getenv("SILENCE_THRESHOLD_DB", "-45")),
            silence_duration_ms=float(os.getenv("SILENCE_DURATION_MS", "1000")),
            auto_stop_start_guard_ms=float(os.getenv("AUTO_STOP_START_GUARD_MS", "300")),
            require_speech_before_auto_stop=_env_bool("REQUIRE_SPEECH_BEFORE_AUTO_STOP", True),
            speech_activate_threshold_db=float(os.getenv("SPEECH_ACTIVATE_THRESHOLD_DB", "-32")),
            ema_alpha=float(os.getenv("EMA_ALPHA", "0.2")),
            max_recording_seconds=float(os.getenv("MAX_RECORDING_SECONDS", "120")),
            min_recording_seconds=float(os.getenv("MIN_RECORDING_SECONDS", "0.2")),
            realtime_silence_duration_ms=int(os.getenv("REALTIME_SILENCE_DURATION_MS", "600")),
            realtime_prefix_padding_ms=int(os.getenv("REALTIME_PREFIX_PADDING_MS", "240")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise


def resolve_api_key(config: PressTalkConfig) -> Optional[str]:
    """Configured key first, then the environment."""
    key = config.openai_api_key.strip()
    if key:
        return key
    key = os.getenv("OPENAI_API_KEY", "").strip()
    return key or None


def create_example_env_file(path: Path = Path(".env.example")):
    example_content = """# OpenAI API key - https://platform.openai.com/api-keys
OPENAI_API_KEY=your_api_key_here

# Transcription model: gpt-4o-mini-transcribe, gpt-4o-transcribe
TRANSCRIBE_MODEL=gpt-4o-mini-transcribe

# Transport: upload (multipart + streaming) or realtime (WebSocket PCM)
TRANSPORT=upload
REALTIME_FALLBACK_TO_UPLOAD=true

# Language hint: auto, zh, en
LANGUAGE_MODE=auto

# Optional prompt (only sent for recordings of at least PROMPT_MIN_DURATION_SECONDS)
CUSTOM_PROMPT=
PROMPT_ENABLED=true
PROMPT_MIN_DURATION_SECONDS=1.0

# Trim leading/trailing silence before upload
ENABLE_VAD_TRIM=true

# Auto-stop on silence
ENABLE_AUTO_STOP_ON_SILENCE=true
AUTO_STOP_DEBUG_LOGS=false
SILENCE_THRESHOLD_DB=-45
SILENCE_DURATION_MS=1000
AUTO_STOP_START_GUARD_MS=300
REQUIRE_SPEECH_BEFORE_AUTO_STOP=true
SPEECH_ACTIVATE_THRESHOLD_DB=-32
EMA_ALPHA=0.2

# Recording length limits (seconds)
MAX_RECORDING_SECONDS=120
MIN_RECORDING_SECONDS=0.2

# Realtime server VAD tuning (ms)
REALTIME_SILENCE_DURATION_MS=600
REALTIME_PREFIX_PADDING_MS=240

# Logging level
LOG_LEVEL=INFO
"""

    with open(path, "w") as f:
        f.write(example_content)

    logger.info(f"Created example environment file at {path}")


def setup_logging(log_level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    for noisy in ("urllib3", "websockets"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
