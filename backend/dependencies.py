"""
Service wiring for the API.

Builds one instance of every pipeline component and hands the container to
route handlers through the `get_services` dependency. Tests swap the
container with `app.dependency_overrides[get_services]`.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Request
from redis.exceptions import RedisError

from config import settings
from pipeline.script_generator import ScriptGenerator
from pipeline.session_manager import CreativeSessionService
from pipeline.video_stitcher import VideoStitcher
from redis_client import RedisClient
from services.asset_fetcher import AssetFetcher
from services.genai_client import GenerativeClient
from services.record_store import DynamoRecordStore, FailoverRecordStore, RecordStore
from services.s3_storage import S3BlobStore
from services.session_store import ProductCatalog, SceneVideoJobRepository, SessionRepository
from services.usage_counter import UsageCounter
from workers.scene_video_worker import SceneVideoJobProcessor
from workers.stitch_worker import StitchJobRunner
from workers.tasks import TaskTracker

logger = structlog.get_logger()


@dataclass
class ServiceContainer:
    store: RecordStore
    blob_store: object
    usage_counter: UsageCounter
    generative_client: object
    sessions: SessionRepository
    jobs: SceneVideoJobRepository
    catalog: ProductCatalog
    tracker: TaskTracker
    scene_jobs: SceneVideoJobProcessor
    stitch_runner: StitchJobRunner
    creative: CreativeSessionService
    redis_client: Optional[RedisClient] = None


def _connect_usage_redis() -> Optional[RedisClient]:
    if not settings.USAGE_PERSIST_TO_REDIS:
        return None
    try:
        return RedisClient()
    except RedisError as e:
        logger.warning("usage_redis_unavailable", error=str(e))
        return None


def build_services(
    store: Optional[RecordStore] = None,
    blob_store=None,
    generative_client=None,
    fetcher=None,
    stitcher: Optional[VideoStitcher] = None,
    usage_counter: Optional[UsageCounter] = None,
) -> ServiceContainer:
    """Construct the component graph; any component can be passed in pre-built."""
    redis_client = None
    if usage_counter is None:
        redis_client = _connect_usage_redis()
        usage_counter = UsageCounter(redis_client=redis_client)

    store = store or FailoverRecordStore(DynamoRecordStore())
    blob_store = blob_store or S3BlobStore()
    generative_client = generative_client or GenerativeClient(usage_counter)
    fetcher = fetcher or AssetFetcher(blob_store)
    stitcher = stitcher or VideoStitcher(blob_store)

    sessions = SessionRepository(store)
    jobs = SceneVideoJobRepository(store)
    catalog = ProductCatalog(store)
    tracker = TaskTracker()

    scene_jobs = SceneVideoJobProcessor(jobs, sessions, generative_client, fetcher, blob_store, tracker)
    stitch_runner = StitchJobRunner(sessions, stitcher, tracker)
    creative = CreativeSessionService(
        sessions=sessions,
        jobs=jobs,
        catalog=catalog,
        script_generator=ScriptGenerator(generative_client),
        generative_client=generative_client,
        fetcher=fetcher,
        blob_store=blob_store,
        scene_jobs=scene_jobs,
        stitch_runner=stitch_runner,
        tracker=tracker,
    )

    return ServiceContainer(
        store=store,
        blob_store=blob_store,
        usage_counter=usage_counter,
        generative_client=generative_client,
        sessions=sessions,
        jobs=jobs,
        catalog=catalog,
        tracker=tracker,
        scene_jobs=scene_jobs,
        stitch_runner=stitch_runner,
        creative=creative,
        redis_client=redis_client,
    )


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the container built at startup."""
    return request.app.state.services
