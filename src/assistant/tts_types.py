from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class CachedAudio:
    """A script that was already in storage; only its URL is known."""

    url: str


@dataclass(frozen=True)
class FreshAudio:
    """
    A script synthesized on this request.

    `payload` is the encoded audio (mp3) that was just stored at `url`.
    """

    payload: bytes
    url: str


SynthesizedAudio = Union[CachedAudio, FreshAudio]
