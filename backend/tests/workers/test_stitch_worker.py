"""
Tests for the stitch job runner and its live progress channel.
"""

import asyncio

import pytest

from pipeline.error_handler import ErrorCode, PipelineError, PreconditionFailed
from pipeline.video_stitcher import StitchResult
from tests.fakes import BUCKET_URL, FakeStitcher
from ugc_schemas import Scene, StitchProgress, UGCSession
from workers.stitch_worker import StitchJobRunner
from workers.tasks import TaskTracker


def _scenes():
    return [
        Scene(id=2, title="Problem", videoUrl=f"{BUCKET_URL}/videos/scene-2.mp4", transition="dissolve"),
        Scene(id=1, title="Hook", videoUrl=f"{BUCKET_URL}/videos/scene-1.mp4"),
        Scene(id=3, title="Outro", includeInFinal=False),
    ]


async def _session(services, **fields):
    session = UGCSession(id="s1", ownerId="user-1", productId="prod-1", currentStep=3, scenes=_scenes(), **fields)
    await services.sessions.save(session)
    return session


def _runner(services, stitcher):
    return StitchJobRunner(services.sessions, stitcher, services.tracker, progress_ttl=60)


class TestStart:

    @pytest.mark.asyncio
    async def test_no_included_scenes(self, services):
        await _session(services)
        scenes = [scene.model_copy(update={"includeInFinal": False}) for scene in _scenes()]

        with pytest.raises(PipelineError) as exc_info:
            await services.stitch_runner.start("s1", scenes)

        assert exc_info.value.code == ErrorCode.NO_SCENES
        assert (await services.sessions.get("s1")).status == "draft"

    @pytest.mark.asyncio
    async def test_included_scene_without_video(self, services):
        await _session(services)
        scenes = _scenes()
        scenes[1].videoUrl = None

        with pytest.raises(PreconditionFailed) as exc_info:
            await services.stitch_runner.start("s1", scenes)

        assert exc_info.value.details == {"sceneIds": [1]}

    @pytest.mark.asyncio
    async def test_marks_session_generating(self, services):
        stitcher = FakeStitcher()
        runner = _runner(services, stitcher)
        await _session(services, videoProgress=100, errorMessage="old failure")

        await runner.start("s1", _scenes())

        session = await services.sessions.get("s1")
        assert session.status == "generating"
        assert session.currentStep == 4
        assert session.videoProgress == 0
        assert session.errorMessage is None
        assert runner.get_live_progress("s1").progress == 0
        await services.tracker.drain()


class TestRun:

    @pytest.mark.asyncio
    async def test_clips_ordered_by_scene_id(self, services):
        stitcher = FakeStitcher()
        runner = _runner(services, stitcher)
        await _session(services)

        await runner.start("s1", _scenes())
        await services.tracker.drain()

        clips = stitcher.calls[0]["clips"]
        assert [clip.video_url for clip in clips[:2]] == [
            f"{BUCKET_URL}/videos/scene-1.mp4",
            f"{BUCKET_URL}/videos/scene-2.mp4",
        ]
        assert clips[2].include_in_final is False
        assert stitcher.calls[0]["output_name"].startswith("ugc-video-s1-")

    @pytest.mark.asyncio
    async def test_success_updates_session_and_history(self, services):
        stitcher = FakeStitcher()
        runner = _runner(services, stitcher)
        await _session(services)

        await runner.start("s1", _scenes())
        await services.tracker.drain()

        session = await services.sessions.get("s1")
        assert session.status == "completed"
        assert session.videoProgress == 100
        assert session.videoUrl == f"{BUCKET_URL}/videos/final.mp4"
        assert len(session.stitchedVideos) == 1
        assert session.stitchedVideos[0].sceneCount == 2
        assert session.stitchedVideos[0].duration == 8.5
        assert runner.get_live_progress("s1").stage == "complete"

    @pytest.mark.asyncio
    async def test_second_stitch_appends_history(self, services):
        runner = _runner(services, FakeStitcher())
        await _session(services)

        await runner.start("s1", _scenes())
        await services.tracker.drain()
        await runner.start("s1", _scenes())
        await services.tracker.drain()

        assert len((await services.sessions.get("s1")).stitchedVideos) == 2

    @pytest.mark.asyncio
    async def test_failure_marks_session_failed(self, services):
        stitcher = FakeStitcher(
            result=StitchResult(success=False, error="ffmpeg failed", scene_count=2),
            stages=[StitchProgress(stage="downloading", progress=20, message="All scenes downloaded")],
        )
        runner = _runner(services, stitcher)
        await _session(services)

        await runner.start("s1", _scenes())
        await services.tracker.drain()

        session = await services.sessions.get("s1")
        assert session.status == "failed"
        assert session.errorMessage == "ffmpeg failed"
        assert session.videoProgress == 20
        assert session.videoUrl is None
        live = runner.get_live_progress("s1")
        assert live.stage == "error"
        assert live.message == "ffmpeg failed"

    @pytest.mark.asyncio
    async def test_persisted_progress_is_monotonic(self, services):
        stitcher = FakeStitcher(
            result=StitchResult(success=False, error="boom"),
            stages=[
                StitchProgress(stage="processing", progress=40, message="All scenes normalized"),
                StitchProgress(stage="stitching", progress=30, message="late update"),
            ],
        )
        runner = _runner(services, stitcher)
        await _session(services)

        await runner.start("s1", _scenes())
        await services.tracker.drain()

        assert (await services.sessions.get("s1")).videoProgress == 40

    @pytest.mark.asyncio
    async def test_channel_cleared_after_ttl(self, services):
        runner = StitchJobRunner(services.sessions, FakeStitcher(), TaskTracker(), progress_ttl=0)
        await _session(services)

        await runner.start("s1", _scenes())
        await runner.tracker.drain()

        await asyncio.sleep(0.01)

        assert runner.get_live_progress("s1") is None
