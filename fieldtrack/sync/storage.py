"""Media storage providers for evidence uploads."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from .client import classify_response
from .errors import MediaUploadError

logger = logging.getLogger(__name__)


class MediaStorage(ABC):
    """Stores evidence bytes and returns a public URL."""

    @abstractmethod
    async def upload(self, data: bytes, path_hint: str, content_type: str) -> str:
        """
        Store bytes.

        Args:
            data: Raw file bytes
            path_hint: Object path inside the bucket
            content_type: MIME type of the bytes

        Returns:
            Public URL of the stored object

        Raises:
            MediaUploadError: The bytes could not be stored
        """


class SupabaseStorage(MediaStorage):
    """Supabase storage bucket over HTTP."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        bucket: str = "task-files",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.bucket = bucket
        self.timeout = timeout
        self.transport = transport

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"

    async def upload(self, data: bytes, path_hint: str, content_type: str) -> str:
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{path_hint}"
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": content_type,
        }

        logger.info(f"Uploading {len(data)} bytes to {self.bucket}/{path_hint}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as http:
                response = await http.post(url, content=data, headers=headers)
        except (httpx.TransportError, asyncio.TimeoutError) as e:
            raise MediaUploadError(f"Upload of {path_hint} failed: {e}") from e

        error = classify_response(response)
        if error is not None:
            logger.error(f"Upload of {path_hint} rejected: {error}")
            raise MediaUploadError(f"Upload of {path_hint} failed: {error}") from error

        return self.public_url(path_hint)
