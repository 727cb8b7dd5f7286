from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog

from src.assistant.config import get_config
from src.assistant.errors import DataError, NetworkError
from src.assistant.tts_providers.base import TTSProvider

logger = structlog.get_logger(__name__)


class OpenAITTS(TTSProvider):
    """
    OpenAI Text-to-Speech provider (non-streaming).

    This provider synthesizes a full mp3 and returns it in one piece.
    """

    content_type = "audio/mpeg"

    def __init__(self, config: Optional[Any] = None, client: Optional[Any] = None):
        self.config = config or get_config()
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import OpenAI  # Local import to keep module import light

            self._client = OpenAI(
                api_key=self.config.openai_api_key,
                timeout=self.config.http_timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def synthesize(self, text: str) -> bytes:
        client = self._get_client()

        def _call() -> bytes:
            resp = client.audio.speech.create(
                model=self.config.openai_tts_model,
                voice=self.config.openai_tts_voice,
                input=text,
                response_format="mp3",
            )
            # SDKs have varied over time; handle several shapes.
            data = getattr(resp, "content", None)
            if isinstance(data, (bytes, bytearray)):
                return bytes(data)
            read = getattr(resp, "read", None)
            if callable(read):
                return read()
            return bytes(resp)

        try:
            audio = await asyncio.to_thread(_call)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("OpenAI TTS failed", error_type=type(e).__name__, error=str(e))
            raise NetworkError(f"Text-to-speech failed: {e}") from e

        if not audio:
            raise DataError("Text-to-speech returned no audio")

        logger.info(
            "OpenAI TTS synthesized",
            model=self.config.openai_tts_model,
            voice=self.config.openai_tts_voice,
            size_bytes=len(audio),
        )
        return audio
