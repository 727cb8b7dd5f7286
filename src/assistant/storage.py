"""
Object storage for synthesized script audio.

Keys live in a flat namespace (e.g. "audio/script-charging-station.mp3").
Backends:
- `firebase`: Firebase Cloud Storage over its REST API
- `local`: files under a directory on disk, addressed by file:// URLs
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional
from urllib.parse import quote

import httpx
import structlog

from src.assistant.config import get_config
from src.assistant.errors import DataError, NetworkError, ObjectNotFound

logger = structlog.get_logger(__name__)

FIREBASE_STORAGE_URL = "https://firebasestorage.googleapis.com/v0/b"

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

TokenProvider = Callable[[], Optional[str]]


class ObjectStorage(ABC):
    @abstractmethod
    async def get_url(self, key: str) -> str:
        """Retrieval URL for `key`; raises ObjectNotFound when absent."""
        raise NotImplementedError

    @abstractmethod
    async def put(self, key: str, data: bytes, *, content_type: str) -> None:
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        try:
            await self.get_url(key)
        except ObjectNotFound:
            return False
        return True

    async def close(self) -> None:
        return None


class FirebaseStorage(ObjectStorage):
    """Firebase Cloud Storage via the v0 REST endpoints."""

    def __init__(
        self,
        config: Optional[Any] = None,
        *,
        token_provider: Optional[TokenProvider] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or get_config()
        self.bucket = self.config.firebase_storage_bucket
        self._token_provider = token_provider
        self._http_client = http_client

    @property
    def base_url(self) -> str:
        return f"{FIREBASE_STORAGE_URL}/{self.bucket}/o"

    def _object_url(self, key: str) -> str:
        return f"{self.base_url}/{quote(key, safe='')}"

    def _headers(self) -> dict[str, str]:
        token = self._token_provider() if self._token_provider else None
        if token:
            return {"Authorization": f"Firebase {token}"}
        return {}

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        timeout = httpx.Timeout(self.config.http_timeout_seconds)
        async with httpx.AsyncClient(timeout=timeout) as client:
            yield client

    async def get_url(self, key: str) -> str:
        url = self._object_url(key)
        try:
            async with self._http() as client:
                resp = await client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error("Storage lookup failed", key=key, error=str(e))
            raise NetworkError(f"Storage lookup failed for {key}: {e}") from e

        if resp.status_code == 404:
            raise ObjectNotFound(key)
        if resp.status_code >= 400:
            logger.error("Storage lookup rejected", key=key, status=resp.status_code)
            raise NetworkError(f"Storage lookup failed for {key}: HTTP {resp.status_code}")

        try:
            metadata = resp.json()
        except ValueError as e:
            raise NetworkError(f"Storage returned invalid metadata for {key}") from e
        if not isinstance(metadata, dict):
            raise NetworkError(f"Storage returned invalid metadata for {key}")

        tokens = (metadata.get("downloadTokens") or "").split(",")
        token = tokens[0].strip()
        if token:
            return f"{url}?alt=media&token={token}"
        return f"{url}?alt=media"

    async def put(self, key: str, data: bytes, *, content_type: str) -> None:
        headers = {"Content-Type": content_type, **self._headers()}
        try:
            async with self._http() as client:
                resp = await client.post(
                    self.base_url,
                    params={"uploadType": "media", "name": key},
                    content=data,
                    headers=headers,
                )
        except httpx.HTTPError as e:
            logger.error("Storage upload failed", key=key, error=str(e))
            raise NetworkError(f"Storage upload failed for {key}: {e}") from e

        if resp.status_code >= 400:
            logger.error("Storage upload rejected", key=key, status=resp.status_code)
            raise NetworkError(f"Storage upload failed for {key}: HTTP {resp.status_code}")

        logger.info("Stored object", key=key, size_bytes=len(data), content_type=content_type)


class LocalStorage(ObjectStorage):
    """Stores objects as files under a root directory."""

    def __init__(self, root: Optional[str] = None):
        path = Path(root) if root is not None else Path("assets") / "audio"
        # Relative roots live under the project root, whatever the working directory.
        if not path.is_absolute():
            path = PROJECT_ROOT / path
        self.root = path

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise DataError(f"Key escapes storage root: {key}")
        return path

    async def get_url(self, key: str) -> str:
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFound(key)
        return path.as_uri()

    async def put(self, key: str, data: bytes, *, content_type: str) -> None:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            logger.error("Local storage write failed", key=key, error=str(e))
            raise NetworkError(f"Storage write failed for {key}: {e}") from e

        logger.info("Stored object", key=key, size_bytes=len(data), path=str(path))


def create_storage(
    config: Optional[Any] = None,
    *,
    token_provider: Optional[TokenProvider] = None,
) -> ObjectStorage:
    config = config or get_config()
    backend = (config.storage_backend or "firebase").strip().lower()

    if backend == "firebase":
        return FirebaseStorage(config, token_provider=token_provider)

    if backend == "local":
        return LocalStorage(config.local_storage_dir)

    raise ValueError(f"Unsupported STORAGE_BACKEND: {config.storage_backend}")
