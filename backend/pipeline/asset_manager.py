"""
Scratch space and downloads for stitching jobs.

Each job owns {STITCH_TEMP_DIR}/{job_id}/ with downloads/, normalized/ and
work/ subdirectories; cleanup() removes the whole tree.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional, Tuple

import aiofiles
import aiohttp
from tenacity import (
    RetryCallState,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
)

from config import settings
from pipeline.error_handler import get_retry_delay

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS = 300
CHUNK_SIZE = 64 * 1024
MAX_DOWNLOAD_BACKOFF_SECONDS = 10.0
TRANSIENT_DOWNLOAD_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


def _download_backoff(retry_state: RetryCallState) -> float:
    return get_retry_delay(retry_state.attempt_number - 1, max_delay=MAX_DOWNLOAD_BACKOFF_SECONDS)


# 3 attempts, only for network-level failures
transient_retry = retry(
    stop=stop_after_attempt(3),
    wait=_download_backoff,
    retry=retry_if_exception_type(TRANSIENT_DOWNLOAD_ERRORS),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


class AssetManager:
    """
    File operations for one stitching job.

    Example:
        >>> assets = AssetManager(uuid.uuid4().hex)
        >>> await assets.create_job_directory()
        >>> path = await assets.download_with_retry(url, "scene-1.mp4", "downloads")
        >>> await assets.cleanup()
    """

    SUBDIRS = ("downloads", "normalized", "work")

    def __init__(self, job_id: str, base_path: Optional[str] = None):
        self.job_id = job_id
        self.base_path = Path(base_path or settings.STITCH_TEMP_DIR)
        self.job_dir = self.base_path / job_id

    async def create_job_directory(self) -> None:
        try:
            for subdir in self.SUBDIRS:
                (self.job_dir / subdir).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Could not create scratch directory for job {self.job_id}: {e}")
            raise
        logger.info(f"Scratch directory ready for job {self.job_id}")

    def path_for(self, filename: str, subdir: Optional[str] = None) -> Path:
        base = self.job_dir / subdir if subdir in self.SUBDIRS else self.job_dir
        return base / filename

    async def download_file(
        self,
        url: str,
        filename: str,
        subdir: Optional[str] = None,
        timeout: int = DOWNLOAD_TIMEOUT_SECONDS
    ) -> str:
        """
        Stream a URL to disk and return the local path.

        A partial file is removed before the error propagates.
        """
        target = self.path_for(filename, subdir)
        target.parent.mkdir(parents=True, exist_ok=True)

        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
                    response.raise_for_status()
                    async with aiofiles.open(target, "wb") as out:
                        async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                            await out.write(chunk)
        except TRANSIENT_DOWNLOAD_ERRORS as e:
            logger.error(f"Download of {url} for job {self.job_id} failed: {e!r}")
            target.unlink(missing_ok=True)
            raise

        logger.info(f"Downloaded {url} -> {target}")
        return str(target)

    @transient_retry
    async def download_with_retry(
        self,
        url: str,
        filename: str,
        subdir: Optional[str] = None,
        timeout: int = DOWNLOAD_TIMEOUT_SECONDS
    ) -> str:
        return await self.download_file(url, filename, subdir, timeout)

    async def save_file(self, content: bytes, filename: str, subdir: Optional[str] = None) -> str:
        target = self.path_for(filename, subdir)
        target.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(target, "wb") as out:
            await out.write(content)
        return str(target)

    async def read_file(self, path: str) -> bytes:
        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    async def cleanup(self) -> None:
        """Remove the job directory. Errors are logged, never raised."""
        if not self.job_dir.exists():
            return
        try:
            await asyncio.to_thread(shutil.rmtree, self.job_dir)
            logger.info(f"Removed scratch directory for job {self.job_id}")
        except OSError as e:
            logger.error(f"Could not remove scratch directory for job {self.job_id}: {e}")

    def __repr__(self) -> str:
        return f"AssetManager(job_id='{self.job_id}', path='{self.job_dir}')"


@transient_retry
async def fetch_bytes(url: str, timeout: int = 60) -> Tuple[bytes, Optional[str]]:
    """Fetch a URL into memory. Returns (content, Content-Type or None)."""
    async with aiohttp.ClientSession() as session:
        async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
            response.raise_for_status()
            return await response.read(), response.headers.get("Content-Type")
