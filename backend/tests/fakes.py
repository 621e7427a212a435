"""
Fakes for the external collaborators: record store outage, blob storage,
the generative provider, reference-image fetching and the stitcher.
"""

from typing import List, Optional

from pipeline.error_handler import StoreUnavailable, UpstreamGenerationFailure
from pipeline.video_stitcher import StitchResult
from services.genai_client import GeneratedMedia
from services.record_store import RecordStore
from services.s3_storage import blob_folder
from ugc_schemas import StitchProgress

BUCKET_URL = "https://test-bucket.s3.us-east-1.amazonaws.com"


class FakeBlobStore:
    """Dict-backed blob store with the S3BlobStore surface."""

    def __init__(self):
        self.blobs = {}
        self.put_names: List[str] = []
        self.deleted: List[str] = []

    def owns(self, url: str) -> bool:
        return url.startswith(BUCKET_URL)

    async def put_blob(self, data: bytes, name: str, mime_type: str) -> str:
        url = f"{BUCKET_URL}/{blob_folder(mime_type)}/{name}"
        self.blobs[url] = data
        self.put_names.append(name)
        return url

    async def get_blob(self, url: str) -> Optional[bytes]:
        return self.blobs.get(url)

    async def delete_blob(self, url: str) -> bool:
        self.deleted.append(url)
        self.blobs.pop(url, None)
        return True


class FakeGenerativeClient:
    """
    Scripted stand-in for GenerativeClient.

    `text_responses` are consumed in order; an Exception entry is raised.
    `image_result` is returned for every image call (None simulates failure).
    """

    def __init__(
        self,
        text_responses=None,
        image_result=GeneratedMedia(data=b"\x89PNG fake", mime_type="image/png"),
        video_result: Optional[bytes] = b"fake mp4 bytes",
        video_error: Optional[Exception] = None,
        progress_ticks=(40, 64, 88),
    ):
        self.text_responses = list(text_responses or [])
        self.image_result = image_result
        self.video_result = video_result
        self.video_error = video_error
        self.progress_ticks = list(progress_ticks)
        self.text_calls = []
        self.image_calls = []
        self.video_calls = []

    async def generate_text(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        self.text_calls.append((prompt, system_prompt))
        if not self.text_responses:
            raise UpstreamGenerationFailure("text", "No scripted response")
        response = self.text_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def generate_image(self, prompt: str, reference_images=None) -> Optional[GeneratedMedia]:
        self.image_calls.append((prompt, reference_images))
        return self.image_result

    async def generate_video_from_image(self, image_bytes, mime_type, prompt, on_progress=None):
        self.video_calls.append((image_bytes, mime_type, prompt))
        for progress in self.progress_ticks:
            if on_progress is not None:
                await on_progress(progress, f"Generating video... ({progress})")
        if self.video_error is not None:
            raise self.video_error
        return self.video_result


class FakeFetcher:
    """Returns deterministic bytes for any URL except the ones marked as failing."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.fetched: List[str] = []

    async def fetch(self, url: str) -> Optional[GeneratedMedia]:
        self.fetched.append(url)
        if not url or url in self.failing:
            return None
        return GeneratedMedia(data=f"image:{url}".encode(), mime_type="image/png")


class FailingRecordStore(RecordStore):
    """Durable store whose every call reports the backend as unavailable."""

    def __init__(self):
        self.calls = 0

    def _fail(self, operation: str):
        self.calls += 1
        raise StoreUnavailable(f"{operation} failed: connection refused")

    async def get(self, pk, sk):
        self._fail("get")

    async def put(self, pk, sk, record):
        self._fail("put")

    async def delete(self, pk, sk):
        self._fail("delete")

    async def query(self, pk, sk_prefix=""):
        self._fail("query")

    async def query_owner(self, owner_id):
        self._fail("query_owner")


class FakeStitcher:
    """Reports a short progress sequence and returns a scripted result."""

    def __init__(self, result: Optional[StitchResult] = None, stages=None):
        self.result = result or StitchResult(
            success=True,
            video_url=f"{BUCKET_URL}/videos/final.mp4",
            duration=8.5,
            scene_count=2
        )
        self.stages = stages or [
            StitchProgress(stage="downloading", progress=20, message="All scenes downloaded"),
            StitchProgress(stage="stitching", progress=85, message="Transitions applied"),
            StitchProgress(stage="complete", progress=100, message="Video ready!"),
        ]
        self.calls = []

    async def stitch(self, clips, job_id=None, on_progress=None, output_name=None):
        self.calls.append({"clips": list(clips), "job_id": job_id, "output_name": output_name})
        for update in self.stages:
            if on_progress is not None:
                await on_progress(update)
        return self.result


