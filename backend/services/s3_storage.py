"""
S3 blob storage for generated images and videos.

`put_blob` never raises: when an upload fails it returns a clearly marked
placeholder URL so generation stages can continue in a degraded state.
"""

import asyncio
import time
from typing import Optional
from urllib.parse import unquote, urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError
import structlog

from config import settings

logger = structlog.get_logger()

PLACEHOLDER_MARKER = "placeholder-"


def is_placeholder_url(url: Optional[str]) -> bool:
    """True for URLs produced by a failed upload."""
    if not url:
        return False
    return urlparse(url).path.rsplit("/", 1)[-1].startswith(PLACEHOLDER_MARKER)


def blob_folder(mime_type: str) -> str:
    return "videos" if mime_type.startswith("video/") else "images"


class S3BlobStore:
    """
    Put/get/delete of binary objects in a single S3 bucket.
    """

    def __init__(
        self,
        bucket_name: Optional[str] = None,
        region: Optional[str] = None,
        s3_client=None
    ):
        self.bucket_name = bucket_name or settings.STORAGE_BUCKET
        self.region = region or settings.AWS_REGION
        self.s3_client = s3_client or boto3.client(
            "s3",
            region_name=self.region,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None
        )

        logger.info(
            "s3_storage_initialized",
            bucket=self.bucket_name,
            region=self.region
        )

    def url_for_key(self, key: str) -> str:
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{key}"

    def key_for_url(self, url: str) -> Optional[str]:
        """Object key for a URL in this bucket, or None for foreign URLs."""
        parsed = urlparse(url)
        if not parsed.netloc.startswith(f"{self.bucket_name}.s3."):
            return None
        key = unquote(parsed.path.lstrip("/"))
        return key or None

    def owns(self, url: str) -> bool:
        return self.key_for_url(url) is not None

    def placeholder_url(self, name: str, mime_type: str) -> str:
        timestamp = int(time.time() * 1000)
        return (
            f"https://{self.bucket_name}.s3.amazonaws.com/"
            f"{blob_folder(mime_type)}/{PLACEHOLDER_MARKER}{timestamp}-{name}"
        )

    def _put(self, data: bytes, key: str, mime_type: str) -> None:
        self.s3_client.put_object(
            Bucket=self.bucket_name,
            Key=key,
            Body=data,
            ContentType=mime_type
        )

    async def put_blob(self, data: bytes, name: str, mime_type: str) -> str:
        """
        Upload bytes and return their public URL.

        Args:
            data: Object content
            name: File name; prefixed with a millisecond timestamp in the key
            mime_type: Content type; video/* goes under videos/, everything else under images/

        Returns:
            The object URL, or a placeholder URL if the upload failed
        """
        key = f"{blob_folder(mime_type)}/{int(time.time() * 1000)}-{name}"
        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, self._put, data, key, mime_type)
        except (ClientError, BotoCoreError) as e:
            placeholder = self.placeholder_url(name, mime_type)
            logger.error(
                "s3_upload_failed",
                s3_key=key,
                error=str(e),
                placeholder_url=placeholder
            )
            return placeholder

        logger.info(
            "s3_file_uploaded",
            bucket=self.bucket_name,
            s3_key=key,
            content_type=mime_type,
            size_bytes=len(data)
        )
        return self.url_for_key(key)

    def _get(self, key: str) -> bytes:
        response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
        return response["Body"].read()

    async def get_blob(self, url: str) -> Optional[bytes]:
        """Read an object from this bucket by URL; None if foreign, placeholder or unreadable."""
        key = self.key_for_url(url)
        if key is None or is_placeholder_url(url):
            return None
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, self._get, key)
        except (ClientError, BotoCoreError) as e:
            logger.warning("s3_get_failed", s3_key=key, error=str(e))
            return None

    def _delete(self, key: str) -> None:
        self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)

    async def delete_blob(self, url: str) -> bool:
        """
        Delete the object behind `url`.

        Placeholder URLs have nothing behind them and count as deleted.
        Returns False when the URL is foreign or the delete failed.
        """
        if is_placeholder_url(url):
            return True

        key = self.key_for_url(url)
        if key is None:
            logger.warning("s3_delete_foreign_url", url=url)
            return False

        loop = asyncio.get_event_loop()
        try:
            await loop.run_in_executor(None, self._delete, key)
        except (ClientError, BotoCoreError) as e:
            logger.error("s3_delete_failed", s3_key=key, error=str(e))
            return False

        logger.info("s3_file_deleted", bucket=self.bucket_name, s3_key=key)
        return True
