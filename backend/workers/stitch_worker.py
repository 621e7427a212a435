"""
Worker for final video stitching.

`start()` marks the session as generating and hands the scene clips to the
VideoStitcher in a background task. While the task runs, every progress
update lands in `progress_channel`, which pollers read in preference to the
session's persisted coarse `videoProgress`. The channel entry is dropped a
fixed delay after the job finishes.
"""

import asyncio
import time
import uuid
from typing import Dict, List, Optional, Sequence

import structlog

from config import settings
from pipeline.error_handler import ErrorCode, PipelineError, PreconditionFailed
from pipeline.video_stitcher import SceneClip, StitchResult, VideoStitcher
from services.session_store import SessionRepository
from ugc_schemas import STEP_STITCHING, Scene, StitchedVideo, StitchProgress, UGCSession
from workers.tasks import TaskTracker

logger = structlog.get_logger()


class StitchJobRunner:
    def __init__(
        self,
        session_repo: SessionRepository,
        stitcher: VideoStitcher,
        tracker: TaskTracker,
        progress_ttl: Optional[float] = None,
    ):
        self.session_repo = session_repo
        self.stitcher = stitcher
        self.tracker = tracker
        self.progress_ttl = settings.STITCH_PROGRESS_TTL_SECONDS if progress_ttl is None else progress_ttl
        # session id -> latest progress; written only by that session's stitch task
        self.progress_channel: Dict[str, StitchProgress] = {}
        self.logger = logger.bind(service="stitch_jobs")

    def get_live_progress(self, session_id: str) -> Optional[StitchProgress]:
        return self.progress_channel.get(session_id)

    async def start(self, session_id: str, scenes: Sequence[Scene]) -> str:
        """
        Begin stitching `scenes` (ordered by scene id) for a session.

        Raises:
            PipelineError(NO_SCENES): no scene is included in the final video
            PreconditionFailed: an included scene has no video yet

        Returns:
            The stitch job id
        """
        ordered = sorted(scenes, key=lambda scene: scene.id)
        included = [scene for scene in ordered if scene.includeInFinal]
        if not included:
            raise PipelineError(ErrorCode.NO_SCENES, "No scenes to stitch", {"sessionId": session_id})
        missing = [scene.id for scene in included if not scene.videoUrl]
        if missing:
            raise PreconditionFailed(
                "Generate videos for all included scenes first",
                {"sceneIds": missing}
            )

        def mark_generating(session: UGCSession) -> None:
            session.status = "generating"
            session.advance_step(STEP_STITCHING)
            session.videoProgress = 0
            session.errorMessage = None

        await self.session_repo.update(session_id, mark_generating)

        job_id = uuid.uuid4().hex
        self.progress_channel[session_id] = StitchProgress(stage="downloading", progress=0, message="Starting...")
        clips = [SceneClip.from_scene(scene) for scene in ordered]
        self.tracker.spawn(
            self._run(session_id, clips, job_id),
            name=f"stitch-{session_id}",
            session_id=session_id,
            job_id=job_id
        )
        self.logger.info("stitch_job_started", session_id=session_id, job_id=job_id, scene_count=len(included))
        return job_id

    async def _persist_progress(self, session_id: str, progress: int) -> None:
        def apply(session: UGCSession) -> None:
            session.videoProgress = max(session.videoProgress, progress)

        try:
            await self.session_repo.update(session_id, apply)
        except PipelineError as e:
            self.logger.warning("stitch_progress_persist_failed", session_id=session_id, error=e.message)

    async def _run(self, session_id: str, clips: List[SceneClip], job_id: str) -> None:
        async def on_progress(update: StitchProgress) -> None:
            self.progress_channel[session_id] = update
            if update.stage != "error":
                await self._persist_progress(session_id, update.progress)

        try:
            result = await self.stitcher.stitch(
                clips,
                job_id=job_id,
                on_progress=on_progress,
                output_name=f"ugc-video-{session_id}-{int(time.time() * 1000)}.mp4"
            )
        except PipelineError as e:
            result = StitchResult(success=False, error=e.get_user_friendly_message())

        try:
            await self._finish(session_id, result)
        finally:
            self._schedule_clear(session_id, self.progress_channel.get(session_id))

    async def _finish(self, session_id: str, result: StitchResult) -> None:
        if result.success:
            def complete(session: UGCSession) -> None:
                session.videoUrl = result.video_url
                session.status = "completed"
                session.videoProgress = 100
                session.errorMessage = None
                session.stitchedVideos.append(
                    StitchedVideo(url=result.video_url, sceneCount=result.scene_count, duration=result.duration)
                )

            await self.session_repo.update(session_id, complete)
            self.logger.info("stitch_job_completed", session_id=session_id, video_url=result.video_url)
            return

        def fail(session: UGCSession) -> None:
            session.status = "failed"
            session.errorMessage = result.error or "Video stitching failed"

        await self.session_repo.update(session_id, fail)
        self.progress_channel[session_id] = StitchProgress(
            stage="error", progress=0, message=result.error or "Video stitching failed"
        )
        self.logger.error("stitch_job_failed", session_id=session_id, error=result.error)

    def _schedule_clear(self, session_id: str, entry: Optional[StitchProgress]) -> None:
        def clear() -> None:
            # A newer stitch for the same session owns the channel by now
            if self.progress_channel.get(session_id) is entry:
                self.progress_channel.pop(session_id, None)

        asyncio.get_running_loop().call_later(self.progress_ttl, clear)
