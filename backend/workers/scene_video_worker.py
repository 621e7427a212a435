"""
Worker for per-scene image-to-video jobs.

A submission writes a queued job row and returns; the generation runs as a
background task on the API's event loop:

    queued -> generating (10) -> image fetched (30) -> provider polling (40-90)
           -> result received (92) -> uploading (97) -> completed (100)

Fetch failures, provider failures and timeouts end the job in `failed` with a
message. Nothing is retried automatically; resubmitting the scene replaces
the row and any still-running task for the old job stops writing to it.
"""

import asyncio
import time
import uuid
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from pipeline.error_handler import GenerationTimeout, PipelineError, ValidationError
from pipeline.templates import build_scene_video_prompt
from services.session_store import SceneVideoJobRepository, SessionRepository
from ugc_schemas import Scene, SceneVideoJob, SceneVideoStatus, SubVideo, UGCSession
from workers.tasks import TaskTracker

logger = structlog.get_logger()


class SceneVideoJobProcessor:
    """
    Runs scene video jobs and answers status polls.

    Every write to a job row goes through `_update`, which only touches the
    row while it still belongs to the same job id and never lowers progress.
    """

    def __init__(
        self,
        job_repo: SceneVideoJobRepository,
        session_repo: SessionRepository,
        generative_client,
        fetcher,
        blob_store,
        tracker: TaskTracker,
    ):
        self.job_repo = job_repo
        self.session_repo = session_repo
        self.generative_client = generative_client
        self.fetcher = fetcher
        self.blob_store = blob_store
        self.tracker = tracker
        self._locks: Dict[Tuple[str, int], asyncio.Lock] = {}
        self.logger = logger.bind(service="scene_video_jobs")

    def _lock(self, session_id: str, scene_index: int) -> asyncio.Lock:
        key = (session_id, scene_index)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def forget_session(self, session_id: str) -> None:
        """Drop the per-scene locks of a deleted session."""
        for key in [key for key in self._locks if key[0] == session_id]:
            del self._locks[key]

    async def submit_scene_video_job(
        self,
        session_id: str,
        scene_index: int,
        prompt: str,
        image_url: Optional[str]
    ) -> str:
        """
        Queue image-to-video generation for one scene.

        Args:
            session_id: Parent session
            scene_index: 0-based scene index (scene id - 1)
            prompt: Video prompt
            image_url: Source frame; required

        Returns:
            The new job id
        """
        if scene_index < 0:
            raise ValidationError("sceneIndex must be 0 or greater", details={"sceneIndex": scene_index})
        if not image_url:
            raise ValidationError(
                "Scene image is required. Generate the scene image first.",
                field="imageUrl"
            )

        job = SceneVideoJob(
            id=uuid.uuid4().hex,
            sessionId=session_id,
            sceneIndex=scene_index,
            status="queued",
            progress=0,
            prompt=prompt or "",
            imageUrl=image_url,
        )
        async with self._lock(session_id, scene_index):
            # Same (session, scene) key: replaces any earlier row
            await self.job_repo.save(job)

        self.tracker.spawn(
            self._process(job),
            name=f"scene-video-{session_id}-{scene_index}",
            session_id=session_id,
            scene_index=scene_index,
            job_id=job.id
        )
        self.logger.info("scene_video_job_queued", session_id=session_id, scene_index=scene_index, job_id=job.id)
        return job.id

    async def generate_all_scene_videos(self, session_id: str, scenes: Sequence[Scene]) -> List[str]:
        """Submit one job per scene that has an image. Does not wait for the jobs."""
        eligible = [scene for scene in scenes if scene.imageUrl]
        job_ids = await asyncio.gather(*[
            self.submit_scene_video_job(
                session_id,
                scene.scene_index,
                build_scene_video_prompt(scene),
                scene.imageUrl
            )
            for scene in eligible
        ])
        self.logger.info(
            "scene_video_jobs_fanned_out",
            session_id=session_id,
            submitted=len(job_ids),
            skipped=len(scenes) - len(eligible)
        )
        return list(job_ids)

    async def get_scene_video_status(self, session_id: str) -> List[SceneVideoStatus]:
        jobs = await self.job_repo.list_for_session(session_id)
        return [
            SceneVideoStatus(
                jobId=job.id,
                sceneIndex=job.sceneIndex,
                status=job.status,
                progress=job.progress,
                videoUrl=job.videoUrl,
                errorMessage=job.errorMessage,
            )
            for job in jobs
        ]

    # ===== Background procedure =====

    async def _update(self, job: SceneVideoJob, **changes) -> Optional[SceneVideoJob]:
        """
        Apply `changes` to the stored row for `job`.

        Returns the saved row, or None when a newer submission owns the row.
        """
        async with self._lock(job.sessionId, job.sceneIndex):
            current = await self.job_repo.get(job.sessionId, job.sceneIndex)
            if current is None or current.id != job.id:
                self.logger.info(
                    "scene_video_job_superseded",
                    session_id=job.sessionId,
                    scene_index=job.sceneIndex,
                    job_id=job.id
                )
                return None

            if "progress" in changes:
                changes["progress"] = max(current.progress, changes["progress"])
            for field, value in changes.items():
                setattr(current, field, value)
            return await self.job_repo.save(current)

    async def _fail(self, job: SceneVideoJob, message: str) -> None:
        self.logger.error(
            "scene_video_job_failed",
            session_id=job.sessionId,
            scene_index=job.sceneIndex,
            job_id=job.id,
            error=message
        )
        await self._update(job, status="failed", errorMessage=message)

    async def _process(self, job: SceneVideoJob) -> None:
        try:
            if await self._update(job, status="generating", progress=10, errorMessage=None) is None:
                return

            image = await self.fetcher.fetch(job.imageUrl)
            if image is None:
                await self._fail(job, "Failed to fetch scene image")
                return
            await self._update(job, progress=30)

            async def on_progress(progress: int, message: str) -> None:
                await self._update(job, progress=progress)

            try:
                video_bytes = await self.generative_client.generate_video_from_image(
                    image.data, image.mime_type, job.prompt, on_progress
                )
            except GenerationTimeout as e:
                await self._fail(job, e.get_user_friendly_message())
                return

            if not video_bytes:
                await self._fail(job, "Failed to generate scene video")
                return
            await self._update(job, progress=92)

            await self._update(job, progress=97)
            scene_number = job.sceneIndex + 1
            video_url = await self.blob_store.put_blob(
                video_bytes,
                f"scene-video-{job.sessionId}-{scene_number}-{int(time.time() * 1000)}.mp4",
                "video/mp4"
            )

            saved = await self._update(job, status="completed", progress=100, videoUrl=video_url)
            if saved is None:
                return
            self.logger.info(
                "scene_video_job_completed",
                session_id=job.sessionId,
                scene_index=job.sceneIndex,
                job_id=job.id,
                video_url=video_url
            )
            await self._write_back(job.sessionId, job.sceneIndex, video_url)

        except PipelineError as e:
            await self._fail(job, e.get_user_friendly_message())

    async def _write_back(self, session_id: str, scene_index: int, video_url: str) -> None:
        """
        Copy the clip URL into the session's scene entry.

        Best effort: the job row stays the source of truth and session reads
        reconcile from it.
        """
        def apply(session: UGCSession) -> None:
            for scene in session.scenes:
                if scene.scene_index != scene_index:
                    continue
                if scene.videoUrl and scene.videoUrl != video_url:
                    scene.subVideos.append(SubVideo(url=scene.videoUrl))
                scene.videoUrl = video_url
                return
            self.logger.warning(
                "scene_video_write_back_no_scene",
                session_id=session_id,
                scene_index=scene_index
            )

        try:
            await self.session_repo.update(session_id, apply)
        except PipelineError as e:
            self.logger.warning(
                "scene_video_write_back_failed",
                session_id=session_id,
                scene_index=scene_index,
                error=e.message
            )
