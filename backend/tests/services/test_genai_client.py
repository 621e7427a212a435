"""
Tests for the Gemini client wrapper.

The google-genai client is replaced with mocks; no network calls are made.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

from pipeline.error_handler import GenerationTimeout, UpstreamGenerationFailure
from services.genai_client import GenerativeClient, map_poll_progress
from services.usage_counter import UsageCounter


def _operation(done: bool, video_bytes: bytes = b"", error=None):
    video = SimpleNamespace(video_bytes=video_bytes)
    response = SimpleNamespace(generated_videos=[SimpleNamespace(video=video)])
    return SimpleNamespace(done=done, error=error, response=response if done else None, result=None)


@pytest.fixture
def sdk():
    client = Mock()
    client.aio.models.generate_content = AsyncMock()
    client.aio.models.generate_videos = AsyncMock()
    client.aio.operations.get = AsyncMock()
    client.aio.files.download = AsyncMock()
    return client


@pytest.fixture
def counter():
    return UsageCounter(history_limit=50)


@pytest.fixture
def client(sdk, counter):
    return GenerativeClient(counter, client=sdk, poll_interval=0, max_polls=5, expected_polls=3)


class TestMapPollProgress:
    """Two-phase poll schedule inside the 40-90 band."""

    def test_linear_ramp(self):
        assert map_poll_progress(0) == 40
        assert map_poll_progress(6) == 64
        assert map_poll_progress(12) == 88

    def test_crawl_never_passes_cap(self):
        assert map_poll_progress(13) >= 88
        assert map_poll_progress(60) == 90
        assert map_poll_progress(500) == 90

    def test_monotonic(self):
        values = [map_poll_progress(poll) for poll in range(0, 61)]
        assert values == sorted(values)


class TestGenerateText:

    @pytest.mark.asyncio
    async def test_system_prompt_sent_as_leading_turns(self, client, sdk, counter):
        sdk.aio.models.generate_content.return_value = SimpleNamespace(text="hello")

        text = await client.generate_text("Write a hook", system_prompt="You are a copywriter")

        contents = sdk.aio.models.generate_content.call_args.kwargs["contents"]
        assert [content.role for content in contents] == ["user", "model", "user"]
        assert text == "hello"
        assert counter.stats()["textToText"] == 1

    @pytest.mark.asyncio
    async def test_empty_response_raises(self, client, sdk, counter):
        sdk.aio.models.generate_content.return_value = SimpleNamespace(text="")

        with pytest.raises(UpstreamGenerationFailure):
            await client.generate_text("Write a hook")
        assert counter.success_rate()["failed"] == 1

    @pytest.mark.asyncio
    async def test_provider_error_raises(self, client, sdk):
        sdk.aio.models.generate_content.side_effect = RuntimeError("quota exceeded")

        with pytest.raises(UpstreamGenerationFailure):
            await client.generate_text("Write a hook")


class TestGenerateImage:

    @pytest.mark.asyncio
    async def test_inline_image_is_returned(self, client, sdk):
        part = SimpleNamespace(inline_data=SimpleNamespace(data=b"png", mime_type="image/png"))
        candidate = SimpleNamespace(content=SimpleNamespace(parts=[part]))
        sdk.aio.models.generate_content.return_value = SimpleNamespace(candidates=[candidate])

        media = await client.generate_image("portrait")

        assert media.data == b"png"
        assert media.mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_no_image_returns_none(self, client, sdk, counter):
        part = SimpleNamespace(inline_data=None)
        candidate = SimpleNamespace(content=SimpleNamespace(parts=[part]))
        sdk.aio.models.generate_content.return_value = SimpleNamespace(candidates=[candidate])

        assert await client.generate_image("portrait") is None
        assert counter.success_rate()["failed"] == 1


class TestGenerateVideo:

    @pytest.mark.asyncio
    async def test_polls_until_done_and_reports_progress(self, client, sdk):
        sdk.aio.models.generate_videos.return_value = _operation(False)
        sdk.aio.operations.get.side_effect = [_operation(False), _operation(True, b"mp4")]
        updates = []

        result = await client.generate_video_from_image(
            b"img", "image/png", "a clip", lambda progress, message: updates.append(progress)
        )

        assert result == b"mp4"
        assert updates[0] == 40
        assert updates == sorted(updates)
        assert all(40 <= value <= 90 for value in updates)

    @pytest.mark.asyncio
    async def test_timeout_after_max_polls(self, client, sdk, counter):
        sdk.aio.models.generate_videos.return_value = _operation(False)
        sdk.aio.operations.get.return_value = _operation(False)

        with pytest.raises(GenerationTimeout):
            await client.generate_video_from_image(b"img", "image/png", "a clip")
        assert sdk.aio.operations.get.call_count == 5
        assert counter.success_rate()["failed"] == 1

    @pytest.mark.asyncio
    async def test_operation_error_returns_none(self, client, sdk):
        sdk.aio.models.generate_videos.return_value = _operation(False)
        sdk.aio.operations.get.return_value = SimpleNamespace(
            done=True, error={"message": "blocked"}, response=None, result=None
        )

        assert await client.generate_video_from_image(b"img", "image/png", "a clip") is None

    @pytest.mark.asyncio
    async def test_downloads_when_bytes_not_inline(self, client, sdk):
        sdk.aio.models.generate_videos.return_value = _operation(True, b"")
        sdk.aio.files.download.return_value = b"downloaded"

        assert await client.generate_video_from_image(b"img", "image/png", "a clip") == b"downloaded"
