from __future__ import annotations

from abc import ABC, abstractmethod


class TTSProvider(ABC):
    # MIME type of the bytes returned by `synthesize`.
    content_type: str = "audio/mpeg"

    @abstractmethod
    async def synthesize(self, text: str) -> bytes:
        raise NotImplementedError

    async def close(self) -> None:
        return None
