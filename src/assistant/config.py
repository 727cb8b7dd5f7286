"""
Configuration management for the Voice Script Assistant.

Loads environment variables and provides a strongly-typed configuration object.
Validates required keys at startup.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv
import structlog

load_dotenv()

logger = structlog.get_logger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class Config:
    """Strongly-typed configuration object."""

    # Server
    port: int = 7860
    log_level: str = "INFO"

    # OpenAI (STT + TTS)
    openai_api_key: str = ""
    openai_stt_model: str = "whisper-1"
    tts_provider: str = "openai"
    openai_tts_model: str = "tts-1"
    openai_tts_voice: str = "onyx"

    # Firebase (identity + storage)
    firebase_api_key: str = ""
    firebase_storage_bucket: str = ""

    # Object storage
    # - storage_backend selects "firebase" (Cloud Storage REST) or "local" (directory on disk)
    # - synthesized scripts are stored under "<storage_prefix>/<script name>"
    storage_backend: str = "firebase"
    storage_prefix: str = "audio"
    local_storage_dir: str = "assets/audio"

    # Microphone capture
    sample_rate: int = 16000
    channels: int = 1
    analysis_window: int = 2048

    # Silence detection
    silence_threshold: float = 0.02
    silence_duration_ms: int = 5000
    silence_poll_interval_ms: int = 16

    # Remote calls
    http_timeout_seconds: float = 30.0

    @property
    def silence_duration_seconds(self) -> float:
        return self.silence_duration_ms / 1000.0

    @property
    def silence_poll_interval_seconds(self) -> float:
        return self.silence_poll_interval_ms / 1000.0

    def validate(self) -> None:
        """Validate that all required configuration is present."""
        missing = []

        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if not self.firebase_api_key:
            missing.append("FIREBASE_API_KEY")

        backend = (self.storage_backend or "firebase").strip().lower()
        if backend not in ("firebase", "local"):
            raise ConfigError(
                f"Invalid STORAGE_BACKEND '{self.storage_backend}'. Expected 'firebase' or 'local'."
            )
        if backend == "firebase" and not self.firebase_storage_bucket:
            missing.append("FIREBASE_STORAGE_BUCKET")

        if not 0.0 <= self.silence_threshold <= 1.0:
            raise ConfigError(
                f"Invalid SILENCE_THRESHOLD {self.silence_threshold}. Expected a value in [0, 1]."
            )
        if self.silence_duration_ms <= 0:
            raise ConfigError("SILENCE_DURATION_MS must be positive.")

        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                "Please check your .env file."
            )

    def log_config(self) -> None:
        """Log configuration (without secrets)."""
        logger.info(
            "Configuration loaded",
            port=self.port,
            log_level=self.log_level,
            openai_stt_model=self.openai_stt_model,
            tts_provider=self.tts_provider,
            openai_tts_model=self.openai_tts_model,
            openai_tts_voice=self.openai_tts_voice,
            storage_backend=self.storage_backend,
            storage_prefix=self.storage_prefix,
            firebase_storage_bucket=self.firebase_storage_bucket or "NOT SET",
            sample_rate=self.sample_rate,
            silence_threshold=self.silence_threshold,
            silence_duration_ms=self.silence_duration_ms,
            openai_key_set=bool(self.openai_api_key),
            firebase_key_set=bool(self.firebase_api_key),
        )


def _get_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the application configuration.

    Uses lru_cache to ensure we only load config once.
    """
    return Config(
        # Server
        port=_get_int("PORT", 7860),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),

        # OpenAI
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_stt_model=os.getenv("OPENAI_STT_MODEL", "whisper-1"),
        tts_provider=os.getenv("TTS_PROVIDER", "openai").strip().lower(),
        openai_tts_model=os.getenv("OPENAI_TTS_MODEL", "tts-1"),
        openai_tts_voice=os.getenv("OPENAI_TTS_VOICE", "onyx"),

        # Firebase
        firebase_api_key=os.getenv("FIREBASE_API_KEY", ""),
        firebase_storage_bucket=os.getenv("FIREBASE_STORAGE_BUCKET", ""),

        # Storage
        storage_backend=os.getenv("STORAGE_BACKEND", "firebase").strip().lower(),
        storage_prefix=os.getenv("STORAGE_PREFIX", "audio").strip("/"),
        local_storage_dir=os.getenv("LOCAL_STORAGE_DIR", "assets/audio"),

        # Capture
        sample_rate=_get_int("SAMPLE_RATE", 16000),
        channels=_get_int("CHANNELS", 1),
        analysis_window=_get_int("ANALYSIS_WINDOW", 2048),

        # Silence detection
        silence_threshold=_get_float("SILENCE_THRESHOLD", 0.02),
        silence_duration_ms=_get_int("SILENCE_DURATION_MS", 5000),
        silence_poll_interval_ms=_get_int("SILENCE_POLL_INTERVAL_MS", 16),

        http_timeout_seconds=_get_float("HTTP_TIMEOUT_SECONDS", 30.0),
    )


def init_config() -> Config:
    """
    Initialize and validate configuration.

    Call this at application startup to fail fast if config is invalid.
    """
    config = get_config()
    config.validate()
    config.log_config()
    return config
