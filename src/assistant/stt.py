"""
OpenAI Speech-to-Text client.

Sends one finished recording per request to the audio transcriptions endpoint
(`whisper-1` by default) and returns the plain text.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from src.assistant.audio import RecordedAudio
from src.assistant.config import get_config
from src.assistant.errors import DataError, NetworkError

logger = structlog.get_logger(__name__)


@dataclass
class TranscriptionResult:
    """Result from STT."""
    text: str
    latency_ms: float = 0.0
    timestamp: float = field(default_factory=time.time)


class TranscriptionClient:
    """Batch transcription over the OpenAI Audio API."""

    def __init__(self, config: Optional[Any] = None, client: Optional[Any] = None):
        self.config = config or get_config()
        self._client = client
        self._owns_client = False

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import AsyncOpenAI  # Local import to keep module import light

            self._client = AsyncOpenAI(
                api_key=self.config.openai_api_key,
                timeout=self.config.http_timeout_seconds,
                max_retries=0,
            )
            self._owns_client = True
        return self._client

    async def transcribe(self, audio: RecordedAudio) -> TranscriptionResult:
        """
        Transcribe a recording.

        Raises:
            DataError: the recording holds no audio
            NetworkError: the STT request failed
        """
        if audio is None or not audio.data or audio.is_empty:
            raise DataError("Recorded audio is empty")

        client = self._get_client()
        started = time.time()

        try:
            response = await client.audio.transcriptions.create(
                model=self.config.openai_stt_model,
                file=(audio.filename, audio.data, audio.content_type),
            )
        except Exception as e:
            logger.error(
                "Speech-to-text request failed",
                error_type=type(e).__name__,
                error=str(e),
            )
            raise NetworkError(f"Speech-to-text failed: {e}") from e

        text = getattr(response, "text", None)
        if text is None and isinstance(response, str):
            text = response
        if text is None:
            raise DataError("Speech-to-text response missing text")

        latency_ms = (time.time() - started) * 1000
        text = text.strip()

        logger.info(
            "STT transcript",
            text=text[:50] if len(text) > 50 else text,
            latency_ms=round(latency_ms, 2),
            duration_ms=round(audio.duration_ms, 1),
        )

        return TranscriptionResult(text=text, latency_ms=latency_ms)

    async def close(self) -> None:
        if not self._owns_client:
            return
        close = getattr(self._client, "close", None)
        if callable(close):
            try:
                await close()
            except Exception as e:
                logger.warning("Error closing OpenAI client", error=str(e))
