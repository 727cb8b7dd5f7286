"""
Microphone capture.

A PortAudio input stream (via sounddevice) delivers blocks on its own audio
thread. Blocks are handed to the event loop with `call_soon_threadsafe`, so the
recorded chunk list and the analysis window are only ever touched on the loop.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import numpy as np
import structlog

from src.assistant.audio import pcm16_to_byte_time_domain, to_mono_int16
from src.assistant.config import get_config
from src.assistant.errors import MicrophonePermissionError, RecorderStateError

logger = structlog.get_logger(__name__)

StreamFactory = Callable[..., Any]


def _sounddevice_stream(**kwargs: Any) -> Any:
    import sounddevice as sd  # Local import: PortAudio is only needed when recording

    return sd.InputStream(**kwargs)


class AnalysisBuffer:
    """Sliding window over the most recent samples of the live stream."""

    def __init__(self, size: int):
        self.size = max(1, int(size))
        self._samples = np.zeros(0, dtype=np.int16)

    def push(self, block: np.ndarray) -> None:
        if block.size == 0:
            return
        if block.size >= self.size:
            self._samples = block[-self.size:].copy()
        else:
            self._samples = np.concatenate([self._samples, block])[-self.size:]

    def read_bytes(self) -> np.ndarray:
        """Current window as unsigned 8-bit samples (128 = silence)."""
        return pcm16_to_byte_time_domain(self._samples)

    def clear(self) -> None:
        self._samples = np.zeros(0, dtype=np.int16)


class AudioCapture:
    """Owns the microphone stream and its analysis path for one recording."""

    def __init__(
        self,
        config: Optional[Any] = None,
        stream_factory: Optional[StreamFactory] = None,
    ):
        self.config = config or get_config()
        self._stream_factory = stream_factory or _sounddevice_stream
        self._stream: Optional[Any] = None
        self._on_block: Optional[Callable[[np.ndarray], None]] = None
        self._opening = False
        self._analysis = AnalysisBuffer(self.config.analysis_window)

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    @property
    def is_opening(self) -> bool:
        """True while the device is being acquired."""
        return self._opening

    async def open(self, on_block: Callable[[np.ndarray], None]) -> None:
        """
        Request the microphone and start streaming blocks to `on_block`.

        Raises:
            MicrophonePermissionError: the device was denied or is unavailable
            RecorderStateError: a stream is already open or being opened
        """
        if self._stream is not None or self._opening:
            raise RecorderStateError("Microphone stream is already open")

        loop = asyncio.get_running_loop()

        def _callback(indata, frames, time_info, status) -> None:
            if status:
                logger.debug("Input stream status", status=str(status))
            try:
                loop.call_soon_threadsafe(self.feed, np.array(indata, copy=True))
            except RuntimeError:
                # Event loop already closed; the stream is being torn down.
                return

        def _open() -> Any:
            stream = self._stream_factory(
                samplerate=self.config.sample_rate,
                channels=self.config.channels,
                dtype="int16",
                callback=_callback,
            )
            try:
                stream.start()
            except Exception:
                stream.close()
                raise
            return stream

        self._analysis.clear()
        self._on_block = on_block
        self._opening = True
        try:
            self._stream = await asyncio.to_thread(_open)
        except Exception as e:
            self._on_block = None
            logger.error("Microphone access failed", error_type=type(e).__name__, error=str(e))
            raise MicrophonePermissionError(f"Microphone access failed: {e}") from e
        finally:
            self._opening = False

        logger.info(
            "Microphone opened",
            sample_rate=self.config.sample_rate,
            channels=self.config.channels,
        )

    def feed(self, block: np.ndarray) -> None:
        """Deliver one captured block (runs on the event loop)."""
        if self._on_block is None:
            return
        mono = to_mono_int16(block)
        self._analysis.push(mono)
        self._on_block(mono)

    def read_amplitude(self) -> np.ndarray:
        return self._analysis.read_bytes()

    async def close(self) -> None:
        """Stop the stream and release the device. Safe to call repeatedly."""
        stream = self._stream
        self._stream = None
        self._on_block = None
        self._analysis.clear()

        if stream is None:
            return

        def _close() -> None:
            try:
                stream.stop()
            finally:
                stream.close()

        try:
            await asyncio.to_thread(_close)
        except Exception as e:
            logger.warning("Error closing microphone stream", error=str(e))
        else:
            logger.info("Microphone released")
