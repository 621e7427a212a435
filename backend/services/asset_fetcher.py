"""
Fetches reference images (character, product, scene frames) as binary.
"""

import asyncio
import mimetypes
from typing import Optional

import aiohttp
import structlog

from pipeline.asset_manager import fetch_bytes
from services.genai_client import GeneratedMedia

logger = structlog.get_logger()

DEFAULT_IMAGE_MIME_TYPE = "image/png"


def guess_mime_type(url: str, header: Optional[str] = None) -> str:
    if header:
        mime_type = header.split(";", 1)[0].strip()
        if mime_type and mime_type != "application/octet-stream":
            return mime_type
    guessed, _ = mimetypes.guess_type(url.split("?", 1)[0])
    return guessed or DEFAULT_IMAGE_MIME_TYPE


class AssetFetcher:
    """
    Reads objects from our own bucket through the blob store and everything
    else over HTTP. Returns None when the asset cannot be fetched.
    """

    def __init__(self, blob_store=None):
        self.blob_store = blob_store

    async def fetch(self, url: str) -> Optional[GeneratedMedia]:
        if not url:
            return None

        if self.blob_store is not None and self.blob_store.owns(url):
            data = await self.blob_store.get_blob(url)
            if data:
                return GeneratedMedia(data=data, mime_type=guess_mime_type(url))

        try:
            data, content_type = await fetch_bytes(url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("asset_fetch_failed", url=url, error=repr(e))
            return None

        if not data:
            logger.warning("asset_fetch_empty", url=url)
            return None
        return GeneratedMedia(data=data, mime_type=guess_mime_type(url, content_type))
