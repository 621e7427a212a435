"""
Gemini client for text, image and image-to-video generation.

Every call is recorded on the UsageCounter. Image and video generation report
failure by returning None so callers can decide whether a fallback exists;
text generation raises UpstreamGenerationFailure.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Union

import structlog
from google import genai
from google.genai import types

from config import settings
from pipeline.error_handler import GenerationTimeout, UpstreamGenerationFailure
from services.usage_counter import GenerationType, UsageCounter

logger = structlog.get_logger()

SYSTEM_ACKNOWLEDGEMENT = "Understood. I will follow these instructions."

# Poll progress schedule: linear 40 -> 88 across the expected polls, then a
# slow crawl that never passes 90.
POLL_PROGRESS_START = 40
POLL_PROGRESS_END = 88
POLL_PROGRESS_CAP = 90

ProgressCallback = Callable[[int, str], Union[None, Awaitable[None]]]


@dataclass
class GeneratedMedia:
    data: bytes
    mime_type: str


class VideoPollState(str, Enum):
    QUEUED = "queued"
    POLLING = "polling"
    DONE = "done"
    TIMEOUT = "timeout"
    ERROR = "error"


def map_poll_progress(poll: int, expected_polls: int = 12, max_polls: int = 60) -> int:
    """
    Map a provider poll count onto the 40-90% progress band.

    Example:
        >>> map_poll_progress(6)
        64
        >>> map_poll_progress(12)
        88
        >>> map_poll_progress(60)
        90
    """
    if poll <= expected_polls:
        progress = POLL_PROGRESS_START + round(poll / expected_polls * (POLL_PROGRESS_END - POLL_PROGRESS_START))
    else:
        overrun = (poll - expected_polls) / max(max_polls - expected_polls, 1)
        progress = round(POLL_PROGRESS_END + min(overrun * 2, 2))
    return min(progress, POLL_PROGRESS_CAP)


async def _notify(on_progress: Optional[ProgressCallback], progress: int, message: str) -> None:
    if on_progress is None:
        return
    result = on_progress(progress, message)
    if inspect.isawaitable(result):
        await result


class GenerativeClient:
    """
    Async wrapper around google-genai for the three generation capabilities.
    """

    def __init__(
        self,
        usage_counter: UsageCounter,
        api_key: Optional[str] = None,
        client: Optional[genai.Client] = None,
        text_model: Optional[str] = None,
        image_model: Optional[str] = None,
        video_model: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_polls: Optional[int] = None,
        expected_polls: Optional[int] = None,
    ):
        self.usage_counter = usage_counter
        self._client = client
        self._api_key = api_key or settings.GEMINI_API_KEY
        self.text_model = text_model or settings.GEMINI_TEXT_MODEL
        self.image_model = image_model or settings.GEMINI_IMAGE_MODEL
        self.video_model = video_model or settings.GEMINI_VIDEO_MODEL
        self.poll_interval = settings.VIDEO_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.max_polls = max_polls or settings.VIDEO_MAX_POLLS
        self.expected_polls = expected_polls or settings.VIDEO_EXPECTED_POLLS
        self.logger = logger.bind(service="genai")

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            if not self._api_key:
                raise ValueError(
                    "GEMINI_API_KEY is not configured. "
                    "Please set it in your .env file or environment variables."
                )
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    def _record(self, generation_type: GenerationType, model: str, prompt: str, success: bool, started: float):
        self.usage_counter.record(
            generation_type,
            model,
            prompt,
            success,
            response_time_ms=(time.monotonic() - started) * 1000
        )

    async def generate_text(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """
        Single-turn text completion.

        A system prompt is sent as a leading user turn followed by a model
        acknowledgement turn.

        Raises:
            UpstreamGenerationFailure: provider error or empty response
        """
        contents: List[types.Content] = []
        if system_prompt:
            contents.append(types.Content(role="user", parts=[types.Part.from_text(text=system_prompt)]))
            contents.append(types.Content(role="model", parts=[types.Part.from_text(text=SYSTEM_ACKNOWLEDGEMENT)]))
        contents.append(types.Content(role="user", parts=[types.Part.from_text(text=prompt)]))

        started = time.monotonic()
        try:
            response = await self.client.aio.models.generate_content(
                model=self.text_model,
                contents=contents,
            )
            text = response.text
        except Exception as e:
            self._record(GenerationType.TEXT_TO_TEXT, self.text_model, prompt, False, started)
            self.logger.error("text_generation_failed", model=self.text_model, error=str(e))
            raise UpstreamGenerationFailure("text", f"Text generation failed: {e}") from e

        if not text:
            self._record(GenerationType.TEXT_TO_TEXT, self.text_model, prompt, False, started)
            raise UpstreamGenerationFailure("text", "Text generation returned an empty response")

        self._record(GenerationType.TEXT_TO_TEXT, self.text_model, prompt, True, started)
        return text

    async def generate_image(
        self,
        prompt: str,
        reference_images: Optional[List[GeneratedMedia]] = None
    ) -> Optional[GeneratedMedia]:
        """
        Generate one image, optionally conditioned on reference images
        (character, product). Returns None if no image came back.
        """
        parts = [types.Part.from_text(text=prompt)]
        for reference in reference_images or []:
            parts.append(types.Part.from_bytes(data=reference.data, mime_type=reference.mime_type))

        started = time.monotonic()
        try:
            response = await self.client.aio.models.generate_content(
                model=self.image_model,
                contents=[types.Content(role="user", parts=parts)],
                config=types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
            )
        except Exception as e:
            self._record(GenerationType.TEXT_TO_IMAGE, self.image_model, prompt, False, started)
            self.logger.error("image_generation_failed", model=self.image_model, error=str(e))
            return None

        for candidate in response.candidates or []:
            if not candidate.content or not candidate.content.parts:
                continue
            for part in candidate.content.parts:
                if part.inline_data and part.inline_data.data:
                    self._record(GenerationType.TEXT_TO_IMAGE, self.image_model, prompt, True, started)
                    return GeneratedMedia(
                        data=part.inline_data.data,
                        mime_type=part.inline_data.mime_type or "image/png"
                    )

        self._record(GenerationType.TEXT_TO_IMAGE, self.image_model, prompt, False, started)
        self.logger.warning("image_generation_no_image", model=self.image_model)
        return None

    async def generate_video_from_image(
        self,
        image_bytes: bytes,
        mime_type: str,
        prompt: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Optional[bytes]:
        """
        Image-to-video synthesis with bounded polling.

        `on_progress(progress, message)` is called after submission and on
        every poll tick with values in the 40-90 band.

        Returns:
            Video bytes, or None if the provider failed or produced nothing

        Raises:
            GenerationTimeout: the operation was still running after max_polls polls
        """
        started = time.monotonic()
        state = VideoPollState.QUEUED
        try:
            operation = await self.client.aio.models.generate_videos(
                model=self.video_model,
                prompt=prompt,
                image=types.Image(image_bytes=image_bytes, mime_type=mime_type),
                config=types.GenerateVideosConfig(aspect_ratio="9:16", number_of_videos=1),
            )
            await _notify(on_progress, POLL_PROGRESS_START, "Video generation started")

            state = VideoPollState.POLLING
            poll = 0
            while not operation.done:
                if poll >= self.max_polls:
                    state = VideoPollState.TIMEOUT
                    break
                await asyncio.sleep(self.poll_interval)
                poll += 1
                operation = await self.client.aio.operations.get(operation)
                await _notify(
                    on_progress,
                    map_poll_progress(poll, self.expected_polls, self.max_polls),
                    f"Generating video... ({min(poll, self.expected_polls)}/{self.expected_polls})"
                )

            if state == VideoPollState.TIMEOUT:
                self._record(GenerationType.TEXT_TO_VIDEO, self.video_model, prompt, False, started)
                self.logger.error("video_generation_timeout", model=self.video_model, polls=poll)
                raise GenerationTimeout(polls=poll)

            if operation.error:
                state = VideoPollState.ERROR
                raise RuntimeError(f"Video generation failed: {operation.error}")

            result = operation.response or operation.result
            if not result or not result.generated_videos:
                state = VideoPollState.ERROR
                raise RuntimeError("No video was generated")

            video = result.generated_videos[0].video
            video_bytes = video.video_bytes if video.video_bytes else await self.client.aio.files.download(file=video)
            state = VideoPollState.DONE
        except GenerationTimeout:
            raise
        except Exception as e:
            self._record(GenerationType.TEXT_TO_VIDEO, self.video_model, prompt, False, started)
            self.logger.error(
                "video_generation_failed",
                model=self.video_model,
                state=state.value,
                error=str(e)
            )
            return None

        self._record(GenerationType.TEXT_TO_VIDEO, self.video_model, prompt, True, started)
        self.logger.info(
            "video_generation_completed",
            model=self.video_model,
            size_bytes=len(video_bytes),
            elapsed_seconds=round(time.monotonic() - started, 1)
        )
        return video_bytes
