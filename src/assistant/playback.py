"""
Playback of synthesized scripts.

Fresh results are played from the payload in hand; cached results are fetched
from their URL first. Audio is decoded with soundfile and handed to the output
device without blocking. Failures are logged and reported through
`last_error`; they never propagate.
"""

from __future__ import annotations

import asyncio
import io
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional
from urllib.parse import unquote, urlparse

import httpx
import numpy as np
import structlog

from src.assistant.config import get_config
from src.assistant.errors import PlaybackError
from src.assistant.tts_types import CachedAudio, FreshAudio, SynthesizedAudio

logger = structlog.get_logger(__name__)

OutputDevice = Callable[[np.ndarray, int], None]


def _sounddevice_output(samples: np.ndarray, sample_rate: int) -> None:
    import sounddevice as sd  # Local import: PortAudio is only needed when playing

    sd.play(samples, sample_rate)


def decode_audio(data: bytes) -> tuple[np.ndarray, int]:
    """Decode an encoded audio file (mp3, wav, ...) to float32 samples."""
    if not data:
        raise PlaybackError("No audio to play")

    import soundfile as sf  # Local import (libsndfile)

    try:
        samples, sample_rate = sf.read(io.BytesIO(data), dtype="float32")
    except Exception as e:
        raise PlaybackError(f"Could not decode audio: {e}") from e
    return samples, int(sample_rate)


class PlaybackController:
    """Plays one result at a time and exposes loading/error state."""

    def __init__(
        self,
        config: Optional[Any] = None,
        *,
        output: Optional[OutputDevice] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or get_config()
        self._output = output or _sounddevice_output
        self._http_client = http_client
        self._loading = False
        self._last_error: Optional[str] = None
        self._current_source: Optional[str] = None

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def current_source(self) -> Optional[str]:
        """Either "payload" or the URL currently set as the audio source."""
        return self._current_source

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        timeout = httpx.Timeout(self.config.http_timeout_seconds)
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            yield client

    async def _fetch(self, url: str) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme == "file":
            path = Path(unquote(parsed.path))
            return await asyncio.to_thread(path.read_bytes)

        async with self._http() as client:
            resp = await client.get(url)
        resp.raise_for_status()
        return resp.content

    async def play(self, audio: SynthesizedAudio) -> bool:
        """
        Set `audio` as the active source and start playback immediately.

        Returns:
            True if playback started
        """
        self._loading = True
        self._last_error = None

        try:
            if isinstance(audio, FreshAudio):
                self._current_source = "payload"
                data = audio.payload
            elif isinstance(audio, CachedAudio):
                self._current_source = audio.url
                data = await self._fetch(audio.url)
            else:
                raise PlaybackError(f"Unsupported audio result: {type(audio).__name__}")

            samples, sample_rate = decode_audio(data)
            await asyncio.to_thread(self._output, samples, sample_rate)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._last_error = str(e) or type(e).__name__
            logger.error(
                "Playback failed",
                source=self._current_source,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        finally:
            self._loading = False

        logger.info(
            "Playback started",
            source=self._current_source,
            sample_rate=sample_rate,
            duration_s=round(len(samples) / sample_rate, 2) if sample_rate else 0.0,
        )
        return True
