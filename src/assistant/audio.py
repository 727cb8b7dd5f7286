"""
Audio utilities for the Voice Script Assistant.

Capture format is mono 16-bit PCM. Two views are derived from it:
- a WAV container assembled from the recorded blocks (sent to STT)
- an 8-bit "byte time domain" view used for silence detection, centred on 128
  like the analysis buffers of a browser AnalyserNode
"""

import io
import wave
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

SAMPLE_WIDTH = 2
BYTE_TIME_DOMAIN_MIDPOINT = 128
RECORDING_CONTENT_TYPE = "audio/wav"


@dataclass(frozen=True)
class RecordedAudio:
    """A finished recording, assembled from all captured blocks."""

    data: bytes
    sample_rate: int
    chunk_count: int
    duration_ms: float
    content_type: str = RECORDING_CONTENT_TYPE
    filename: str = "audio.wav"

    @property
    def is_empty(self) -> bool:
        return self.duration_ms <= 0.0


def to_mono_int16(block: np.ndarray) -> np.ndarray:
    """Flatten a (frames, channels) block to mono int16, keeping the first channel."""
    data = np.asarray(block)
    if data.ndim > 1:
        data = data[:, 0]
    if data.dtype != np.int16:
        if np.issubdtype(data.dtype, np.floating):
            data = np.clip(data * 32767, -32768, 32767)
        data = data.astype(np.int16)
    return data


def pcm16_to_byte_time_domain(pcm: np.ndarray) -> np.ndarray:
    """
    Map 16-bit PCM samples onto unsigned 8-bit values centred on 128.

    Args:
        pcm: int16 samples

    Returns:
        uint8 samples where 128 is the zero level
    """
    samples = to_mono_int16(pcm)
    if samples.size == 0:
        return np.zeros(0, dtype=np.uint8)
    return ((samples.astype(np.int32) >> 8) + BYTE_TIME_DOMAIN_MIDPOINT).astype(np.uint8)


def max_deviation(samples: Sequence[int]) -> float:
    """
    Largest normalized distance from the zero level in an 8-bit buffer.

    An empty buffer has no deviation.
    """
    data = np.asarray(samples, dtype=np.int32)
    if data.size == 0:
        return 0.0
    midpoint = BYTE_TIME_DOMAIN_MIDPOINT
    return float(np.max(np.abs(data - midpoint))) / midpoint


def get_audio_duration_ms(pcm_bytes: bytes, sample_rate: int) -> float:
    """Duration of mono 16-bit PCM bytes in milliseconds."""
    if not pcm_bytes or sample_rate <= 0:
        return 0.0
    num_samples = len(pcm_bytes) // SAMPLE_WIDTH
    return num_samples / sample_rate * 1000


def write_wav_mono_pcm16(pcm_bytes: bytes, sample_rate: int) -> bytes:
    """Create a mono 16-bit PCM WAV byte string from PCM bytes."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(SAMPLE_WIDTH)
        wf.setframerate(int(sample_rate))
        wf.writeframes(pcm_bytes or b"")
    return buf.getvalue()


def assemble_recording(blocks: List[np.ndarray], sample_rate: int) -> RecordedAudio:
    """
    Join captured blocks into a single WAV recording.

    Zero blocks still produce a valid (header-only) WAV.
    """
    if blocks:
        pcm = np.concatenate([to_mono_int16(b) for b in blocks]).tobytes()
    else:
        pcm = b""

    return RecordedAudio(
        data=write_wav_mono_pcm16(pcm, sample_rate),
        sample_rate=int(sample_rate),
        chunk_count=len(blocks),
        duration_ms=get_audio_duration_ms(pcm, sample_rate),
    )
