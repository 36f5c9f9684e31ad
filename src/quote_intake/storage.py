"""
Storage collaborators that hand document bytes to the pipeline.

Failures surface as StorageError and are never retried at this layer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote

import httpx

from .exceptions import StorageError

logger = logging.getLogger(__name__)


class StorageClient(Protocol):
    async def download_file(self, storage_path: str) -> bytes:
        ...


class LocalStorageClient:
    """Reads documents from a directory on the local filesystem."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    async def download_file(self, storage_path: str) -> bytes:
        path = (self.root / storage_path).resolve()
        if self.root not in path.parents and path != self.root:
            raise StorageError(f"Failed to download file: {storage_path} is outside the storage root")
        try:
            data = await asyncio.get_running_loop().run_in_executor(None, path.read_bytes)
        except OSError as e:
            raise StorageError(f"Failed to download file: {e}") from e
        logger.info(f"File loaded from {path}, size: {len(data)}")
        return data


class SupabaseStorageClient:
    """Downloads documents from a Supabase storage bucket."""

    def __init__(self, url: str, service_key: str, bucket: str = "documents",
                 http_client: Optional[httpx.AsyncClient] = None):
        self.url = url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self._http = http_client or httpx.AsyncClient()
        self._owns_http = http_client is None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def download_file(self, storage_path: str) -> bytes:
        logger.info(f"Downloading file from storage: {storage_path}")
        object_url = f"{self.url}/storage/v1/object/{self.bucket}/{quote(storage_path.lstrip('/'))}"
        try:
            response = await self._http.get(
                object_url,
                headers={
                    "Authorization": f"Bearer {self.service_key}",
                    "apikey": self.service_key,
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Error downloading file: HTTP {e.response.status_code}")
            raise StorageError(
                f"Failed to download file: HTTP {e.response.status_code} for {storage_path}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Error downloading file: {e}")
            raise StorageError(f"Failed to download file: {e}") from e

        logger.info(f"File downloaded successfully, size: {len(response.content)}")
        return response.content
