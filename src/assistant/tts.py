from __future__ import annotations

from typing import Any, Optional

import structlog

from src.assistant.config import get_config
from src.assistant.errors import DataError, ObjectNotFound
from src.assistant.storage import ObjectStorage, create_storage
from src.assistant.tts_providers.base import TTSProvider
from src.assistant.tts_providers.openai_tts import OpenAITTS
from src.assistant.tts_types import CachedAudio, FreshAudio, SynthesizedAudio

logger = structlog.get_logger(__name__)


def create_tts_provider(config: Optional[Any] = None) -> TTSProvider:
    config = config or get_config()
    tts = (config.tts_provider or "openai").strip().lower()

    if tts == "openai":
        return OpenAITTS(config)

    raise ValueError(f"Unsupported TTS_PROVIDER: {config.tts_provider}")


class SpeechSynthesisClient:
    """
    Script synthesis with a storage-backed cache.

    A script name is synthesized at most once: later requests for the same
    name are answered with the stored object's URL.
    """

    def __init__(
        self,
        storage: Optional[ObjectStorage] = None,
        provider: Optional[TTSProvider] = None,
        config: Optional[Any] = None,
    ):
        self.config = config or get_config()
        self._storage = storage or create_storage(self.config)
        self._provider = provider or create_tts_provider(self.config)

    def storage_key(self, script_name: str) -> str:
        prefix = (self.config.storage_prefix or "").strip("/")
        return f"{prefix}/{script_name}" if prefix else script_name

    async def synthesize(self, script_name: str, text: str) -> SynthesizedAudio:
        """
        Get audio for a script, synthesizing and storing it on a cache miss.

        Raises:
            DataError: empty text or empty synthesis result
            NetworkError: synthesis or storage failed
        """
        if not text or not text.strip():
            raise DataError("Text input is required for TTS.")

        key = self.storage_key(script_name)

        try:
            url = await self._storage.get_url(key)
        except ObjectNotFound:
            pass
        else:
            logger.info("Script audio cache hit", key=key)
            return CachedAudio(url=url)

        logger.info("Script audio cache miss, synthesizing", key=key)
        payload = await self._provider.synthesize(text)
        if not payload:
            raise DataError("Text-to-speech returned no audio")

        await self._storage.put(key, payload, content_type=self._provider.content_type)
        url = await self._storage.get_url(key)

        return FreshAudio(payload=payload, url=url)

    async def close(self) -> None:
        await self._provider.close()
        await self._storage.close()
