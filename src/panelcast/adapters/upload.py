"""IObjectStorage adapters: Supabase storage (REST) and local disk."""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import httpx

from panelcast import config
from panelcast.adapters.http import local_path, send
from panelcast.domain.errors import ProviderError, StorageError
from panelcast.ports.interfaces import IObjectStorage

logger = logging.getLogger(__name__)


class SupabaseStorage(IObjectStorage):
    """Uploads with upsert into a public bucket and returns the public object URL."""

    name = "supabase-storage"

    def __init__(
        self,
        *,
        url: str = config.SUPABASE_URL,
        service_key: str = config.SUPABASE_SERVICE_ROLE_KEY,
        bucket: str = config.SUPABASE_BUCKET_NAME,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not url or not service_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        self._url = url.rstrip("/")
        self._service_key = service_key
        self._bucket = bucket
        self._timeout = timeout
        self._transport = transport

    def public_url(self, destination_path: str) -> str:
        return f"{self._url}/storage/v1/object/public/{self._bucket}/{destination_path.lstrip('/')}"

    async def upload(self, data: bytes, destination_path: str, content_type: str) -> str:
        path = destination_path.lstrip("/")
        try:
            await send(
                "POST",
                f"{self._url}/storage/v1/object/{self._bucket}/{path}",
                provider=self.name,
                timeout=self._timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self._service_key}",
                    "apikey": self._service_key,
                    "Content-Type": content_type,
                    "x-upsert": "true",
                },
                content=data,
            )
        except ProviderError as exc:
            raise StorageError(f"Upload of {path} failed: {exc}") from exc
        url = self.public_url(path)
        logger.debug("Uploaded %d bytes to %s", len(data), url)
        return url

    async def download(self, url: str) -> bytes:
        try:
            response = await send("GET", url, provider=self.name, timeout=self._timeout, transport=self._transport)
        except ProviderError as exc:
            raise StorageError(f"Download of {url} failed: {exc}") from exc
        return response.content


class LocalStorage(IObjectStorage):
    """Writes under ``root`` and hands back file:// URIs (for the local renderer and offline runs)."""

    def __init__(self, root: str = os.path.join(config.OUTPUT_DIR, "storage")):
        self._root = Path(root).resolve()

    def _write(self, data: bytes, destination_path: str) -> str:
        target = (self._root / destination_path.lstrip("/")).resolve()
        if self._root not in target.parents:
            raise StorageError(f"Destination {destination_path!r} escapes the storage root")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return target.as_uri()

    async def upload(self, data: bytes, destination_path: str, content_type: str) -> str:
        try:
            return await asyncio.to_thread(self._write, data, destination_path)
        except OSError as exc:
            raise StorageError(f"Could not write {destination_path}: {exc}") from exc

    async def download(self, url: str) -> bytes:
        path = local_path(url)
        if path is None:
            raise StorageError(f"LocalStorage cannot fetch remote URL {url}")
        try:
            return await asyncio.to_thread(Path(path).read_bytes)
        except OSError as exc:
            raise StorageError(f"Could not read {path}: {exc}") from exc
