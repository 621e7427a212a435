"""
Video stitching engine.

Turns an ordered list of scene clips into one composite video:

1. Filter to included scenes (0 -> error, 1 -> return its URL untouched)
2. Download every clip                      progress  0 -> 20
3. Normalize each clip (fps, square pixels,
   guaranteed audio, optional letterbox)    progress 20 -> 40
4. Pairwise crossfade reduction             progress 40 -> 85
5. Upload, probe, clean up                  progress 85 -> 100

Each pairwise step falls back to plain concatenation on its own when its
crossfade filter graph fails; a bad transition never fails the whole job.
"""

import asyncio
import inspect
import random
import uuid
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union

import aiohttp
import structlog
from moviepy import VideoFileClip

from config import settings
from pipeline.asset_manager import AssetManager
from pipeline.error_handler import MediaProcessingFailure, PipelineError
from ugc_schemas import Scene, StitchProgress

logger = structlog.get_logger()

TRANSITIONS = (
    "fade",
    "dissolve",
    "wipeleft",
    "wiperight",
    "slideup",
    "slidedown",
    "circleopen",
    "circleclose",
    "none",
)
SUGGESTED_TRANSITIONS = ("fade", "dissolve", "wipeleft", "slideup", "circleopen")

DEFAULT_CLIP_DURATION = 4.0
DURATION_TOLERANCE = 0.5
AUDIO_SAMPLE_RATE = 44100

ENCODE_ARGS = [
    "-c:v", "libx264", "-preset", "fast", "-crf", "23", "-pix_fmt", "yuv420p",
    "-c:a", "aac", "-b:a", "128k", "-ar", str(AUDIO_SAMPLE_RATE), "-ac", "2",
    "-movflags", "+faststart",
]

ProgressCallback = Callable[[StitchProgress], Union[None, Awaitable[None]]]


@dataclass
class SceneClip:
    """One scene's clip as handed to the stitcher."""
    video_url: str
    transition: Optional[str] = None
    duration: Optional[float] = None
    include_in_final: bool = True

    @classmethod
    def from_scene(cls, scene: Scene) -> "SceneClip":
        return cls(
            video_url=scene.videoUrl or "",
            transition=scene.transition,
            duration=scene.duration,
            include_in_final=scene.includeInFinal,
        )


@dataclass
class ClipInfo:
    duration: float
    width: int
    height: int
    has_audio: bool


@dataclass
class StitchResult:
    success: bool
    video_url: Optional[str] = None
    duration: Optional[float] = None
    error: Optional[str] = None
    scene_count: int = 0
    # Crossfade filter attempts made by this job, including ones that fell back
    transition_calls: int = 0


def normalize_transition(label: Optional[str]) -> Optional[str]:
    """Canonical transition name, or None when the label is not a known transition."""
    if not label:
        return None
    name = label.strip().lower()
    return name if name in TRANSITIONS else None


def auto_assign_transitions(clips: Sequence[SceneClip]) -> List[SceneClip]:
    """
    Give every clip a valid transition.

    Known labels are kept. Otherwise the last clip gets "none" (nothing to
    blend into) and every other clip gets "fade".
    """
    assigned = []
    for index, clip in enumerate(clips):
        transition = normalize_transition(clip.transition)
        if transition is None:
            transition = "none" if index == len(clips) - 1 else "fade"
        assigned.append(replace(clip, transition=transition))
    return assigned


def suggest_transition(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(SUGGESTED_TRANSITIONS)


def xfade_offset(first_duration: float, overlap: float) -> float:
    """Start of the crossfade window, measured from the start of the first clip."""
    return max(0.0, first_duration - overlap)


def composite_duration(durations: Sequence[float], overlaps: Sequence[float]) -> float:
    """Expected length after joining clips with the given per-pair overlaps."""
    return sum(durations) - sum(overlaps)


def resolve_duration(measured: Optional[float], declared: Optional[float]) -> float:
    """
    Duration used for offset math: the measured value whenever there is one.
    A declared duration only stands in when measuring failed.
    """
    if measured and measured > 0:
        if declared and abs(declared - measured) > DURATION_TOLERANCE:
            logger.info(
                "declared_duration_discarded",
                declared=declared,
                measured=round(measured, 3)
            )
        return measured
    return declared if declared and declared > 0 else DEFAULT_CLIP_DURATION


def pick_target_resolution(
    infos: Sequence[Optional[ClipInfo]],
    explicit: Optional[Tuple[int, int]] = None
) -> Optional[Tuple[int, int]]:
    """
    Target frame size for normalization.

    An explicit target wins. Without one, clips keep their own size unless
    they disagree, in which case the first clip's size becomes the target.
    """
    if explicit:
        return explicit
    sizes = [(info.width, info.height) for info in infos if info is not None]
    if len(set(sizes)) > 1:
        return sizes[0]
    return None


def build_normalize_args(
    source: str,
    output: str,
    info: Optional[ClipInfo],
    fps: int,
    target: Optional[Tuple[int, int]] = None,
    duration: Optional[float] = None,
) -> List[str]:
    """
    ffmpeg arguments that re-encode a clip to a fixed frame rate with square
    pixels and an audio track exactly as long as the video.

    `duration` is the source's video stream duration. Source audio is padded
    up to it, a silent source gets synthesized silence of that length, and the
    output is cut there so neither stream outlives the other.
    """
    filters = []
    if target and (info is None or (info.width, info.height) != target):
        width, height = target
        filters.append(f"scale={width}:{height}:force_original_aspect_ratio=decrease")
        filters.append(f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2:color=black")
    filters.extend(["setsar=1", f"fps={fps}"])

    video_duration = duration or (info.duration if info else DEFAULT_CLIP_DURATION)
    has_audio = info.has_audio if info is not None else True
    args = ["-y", "-i", source]
    if has_audio:
        audio_map = "0:a:0"
        audio_filter = ["-af", f"apad=whole_dur={video_duration:.3f}"]
    else:
        args += [
            "-f", "lavfi",
            "-t", f"{video_duration:.3f}",
            "-i", f"anullsrc=channel_layout=stereo:sample_rate={AUDIO_SAMPLE_RATE}",
        ]
        audio_map = "1:a:0"
        audio_filter = []

    args += ["-vf", ",".join(filters), "-map", "0:v:0", "-map", audio_map]
    args += audio_filter
    args += ENCODE_ARGS
    args += ["-t", f"{video_duration:.3f}", output]
    return args


def parse_progress_out_time(progress_output: str) -> Optional[float]:
    """Last `out_time_us` reported by `ffmpeg -progress`, in seconds."""
    last = None
    for line in progress_output.splitlines():
        key, _, value = line.strip().partition("=")
        if key in ("out_time_us", "out_time_ms") and value.strip().isdigit():
            last = int(value) / 1_000_000
    return last


def build_xfade_args(
    first: str,
    second: str,
    output: str,
    transition: str,
    overlap: float,
    offset: float,
    fps: int,
) -> List[str]:
    filter_graph = (
        f"[0:v]settb=AVTB,fps={fps}[v0];"
        f"[1:v]settb=AVTB,fps={fps}[v1];"
        f"[v0][v1]xfade=transition={transition}:duration={overlap:.3f}:offset={offset:.3f},format=yuv420p[outv];"
        f"[0:a][1:a]acrossfade=d={overlap:.3f}:c1=tri:c2=tri[outa]"
    )
    return [
        "-y", "-i", first, "-i", second,
        "-filter_complex", filter_graph,
        "-map", "[outv]", "-map", "[outa]",
        *ENCODE_ARGS,
        output,
    ]


def build_concat_filter_args(inputs: Sequence[str], output: str) -> List[str]:
    args = ["-y"]
    for path in inputs:
        args += ["-i", path]
    streams = "".join(f"[{i}:v][{i}:a]" for i in range(len(inputs)))
    filter_graph = f"{streams}concat=n={len(inputs)}:v=1:a=1[outv][outa]"
    return args + [
        "-filter_complex", filter_graph,
        "-map", "[outv]", "-map", "[outa]",
        *ENCODE_ARGS,
        output,
    ]


def build_concat_demuxer_args(list_file: str, output: str) -> List[str]:
    return ["-y", "-f", "concat", "-safe", "0", "-i", list_file, *ENCODE_ARGS, output]


def concat_list_contents(paths: Sequence[str]) -> str:
    lines = []
    for path in paths:
        escaped = str(Path(path).resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines) + "\n"


class VideoStitcher:
    """
    Stitches scene clips into one video with per-pair transitions.

    `_run_ffmpeg`, `_stream_duration` and `_probe` are the only places that
    touch external media tooling. The instance holds no per-job state, so one
    stitcher serves concurrent jobs.
    """

    def __init__(
        self,
        blob_store,
        transition_duration: Optional[float] = None,
        fps: Optional[int] = None,
        target_resolution: Optional[Tuple[int, int]] = None,
        ffmpeg_path: Optional[str] = None,
        temp_dir: Optional[str] = None,
    ):
        self.blob_store = blob_store
        self.transition_duration = (
            settings.STITCH_TRANSITION_DURATION if transition_duration is None else transition_duration
        )
        self.fps = fps or settings.STITCH_FPS
        self.target_resolution = target_resolution or settings.stitch_target_resolution
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.temp_dir = temp_dir or settings.STITCH_TEMP_DIR
        self.logger = logger.bind(service="video_stitcher")

    # ===== External tooling =====

    async def _run_ffmpeg(self, args: List[str]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                "-hide_banner", "-loglevel", "error",
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise MediaProcessingFailure(f"Could not start ffmpeg: {e}") from e

        _, stderr = await process.communicate()
        if process.returncode != 0:
            tail = stderr.decode(errors="replace")[-2000:]
            raise MediaProcessingFailure(
                "ffmpeg failed",
                {"returncode": process.returncode, "stderr": tail}
            )

    @staticmethod
    def _probe_sync(path: str) -> ClipInfo:
        clip = VideoFileClip(path)
        try:
            width, height = clip.size
            return ClipInfo(
                duration=float(clip.duration),
                width=int(width),
                height=int(height),
                has_audio=clip.audio is not None,
            )
        finally:
            clip.close()

    async def _stream_duration(self, path: str, stream: str = "v") -> Optional[float]:
        """
        Decoded length of the file's first video ("v") or audio ("a") stream.

        The container duration covers the longest stream, so it cannot tell a
        clip whose audio runs past its video from one that is in sync.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                "-hide_banner", "-nostats", "-v", "error",
                "-progress", "pipe:1",
                "-i", path,
                "-map", f"0:{stream}:0",
                "-f", "null", "-",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self.logger.warning("stream_duration_failed", path=path, stream=stream, error=str(e))
            return None

        stdout, _ = await process.communicate()
        if process.returncode != 0:
            self.logger.warning("stream_duration_failed", path=path, stream=stream, returncode=process.returncode)
            return None
        return parse_progress_out_time(stdout.decode(errors="replace"))

    async def _probe(self, path: str) -> Optional[ClipInfo]:
        """
        Clip metadata, or None when the file could not be read.

        `duration` is the video stream's decoded length when ffmpeg can
        measure it, else moviepy's container duration.
        """
        try:
            info = await asyncio.to_thread(self._probe_sync, path)
        except (OSError, ValueError, KeyError, IndexError, TypeError) as e:
            self.logger.warning("probe_failed", path=path, error=str(e))
            return None

        video_duration = await self._stream_duration(path, "v")
        if video_duration:
            info = replace(info, duration=video_duration)
        return info

    # ===== Progress =====

    async def _report(
        self,
        on_progress: Optional[ProgressCallback],
        stage: str,
        progress: int,
        message: str
    ) -> None:
        self.logger.info("stitch_progress", stage=stage, progress=progress, message=message)
        if on_progress is None:
            return
        result = on_progress(StitchProgress(stage=stage, progress=progress, message=message))
        if inspect.isawaitable(result):
            await result

    # ===== Stages =====

    async def _download(
        self,
        assets: AssetManager,
        clips: List[SceneClip],
        job_id: str,
        on_progress: Optional[ProgressCallback]
    ) -> List[str]:
        paths = []
        total = len(clips)
        for index, clip in enumerate(clips):
            await self._report(
                on_progress, "downloading", round(index / total * 20),
                f"Downloading scene {index + 1} of {total}..."
            )
            try:
                path = await assets.download_with_retry(
                    clip.video_url, f"{job_id}-scene-{index}.mp4", "downloads"
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise MediaProcessingFailure(
                    f"Failed to download scene {index + 1}",
                    {"url": clip.video_url, "error": repr(e)},
                    download=True
                ) from e
            paths.append(path)
        await self._report(on_progress, "downloading", 20, "All scenes downloaded")
        return paths

    async def _normalize(
        self,
        assets: AssetManager,
        clips: List[SceneClip],
        sources: List[str],
        job_id: str,
        on_progress: Optional[ProgressCallback]
    ) -> Tuple[List[str], List[float]]:
        total = len(clips)
        infos = [await self._probe(path) for path in sources]
        target = pick_target_resolution(infos, self.target_resolution)

        outputs, durations = [], []
        for index, (clip, source, info) in enumerate(zip(clips, sources, infos)):
            await self._report(
                on_progress, "processing", 20 + round(index / total * 20),
                f"Normalizing scene {index + 1} of {total}..."
            )
            output = str(assets.path_for(f"{job_id}-normalized-{index}.mp4", "normalized"))
            hint = resolve_duration(info.duration if info else None, clip.duration)
            await self._run_ffmpeg(build_normalize_args(source, output, info, self.fps, target, hint))

            measured = await self._probe(output)
            duration = resolve_duration(measured.duration if measured else None, clip.duration)
            outputs.append(output)
            durations.append(duration)

        await self._report(on_progress, "processing", 40, "All scenes normalized")
        return outputs, durations

    async def _concat_with_demuxer(self, assets: AssetManager, inputs: Sequence[str], output: str) -> None:
        list_file = assets.path_for(f"{Path(output).stem}-list.txt", "work")
        await assets.save_file(concat_list_contents(inputs).encode(), list_file.name, "work")
        await self._run_ffmpeg(build_concat_demuxer_args(str(list_file), output))

    async def _concat_pair(self, assets: AssetManager, first: str, second: str, output: str) -> None:
        try:
            await self._run_ffmpeg(build_concat_filter_args([first, second], output))
        except MediaProcessingFailure as e:
            self.logger.warning("concat_filter_failed", output=output, error=e.message)
            await self._concat_with_demuxer(assets, [first, second], output)

    async def _stitch_pair(
        self,
        assets: AssetManager,
        first: str,
        first_duration: float,
        second: str,
        second_duration: float,
        transition: str,
        output: str
    ) -> Tuple[float, bool]:
        """
        Join two clips.

        Returns:
            (expected joined duration, whether a crossfade was attempted)
        """
        overlap = self.transition_duration
        attempted = transition != "none" and overlap > 0 and min(first_duration, second_duration) > overlap
        if attempted:
            offset = xfade_offset(first_duration, overlap)
            try:
                await self._run_ffmpeg(
                    build_xfade_args(first, second, output, transition, overlap, offset, self.fps)
                )
                return composite_duration([first_duration, second_duration], [overlap]), True
            except MediaProcessingFailure as e:
                self.logger.warning(
                    "transition_failed_falling_back_to_concat",
                    transition=transition,
                    offset=offset,
                    error=e.message
                )

        await self._concat_pair(assets, first, second, output)
        return composite_duration([first_duration, second_duration], []), attempted

    async def _stitch_all(
        self,
        assets: AssetManager,
        clips: List[SceneClip],
        inputs: List[str],
        durations: List[float],
        job_id: str,
        on_progress: Optional[ProgressCallback]
    ) -> Tuple[str, float, int]:
        """Returns (final path, duration, crossfade attempts)."""
        final_path = str(assets.path_for(f"{job_id}-stitched.mp4", "work"))
        pair_transitions = [clip.transition for clip in clips[:-1]]

        if all(transition == "none" for transition in pair_transitions):
            await self._report(on_progress, "stitching", 45, "Joining scenes...")
            await self._concat_with_demuxer(assets, inputs, final_path)
            await self._report(on_progress, "stitching", 85, "Scenes joined")
            return final_path, composite_duration(durations, []), 0

        steps = len(inputs) - 1
        transition_calls = 0
        current, current_duration = inputs[0], durations[0]
        for step in range(1, len(inputs)):
            transition = pair_transitions[step - 1]
            await self._report(
                on_progress, "stitching", 40 + round((step - 1) / steps * 45),
                f"Applying {transition} transition ({step}/{steps})..."
            )
            output = final_path if step == steps else str(assets.path_for(f"{job_id}-step-{step}.mp4", "work"))
            expected, attempted = await self._stitch_pair(
                assets, current, current_duration, inputs[step], durations[step], transition, output
            )
            transition_calls += attempted

            # The next offset is taken from the intermediate as encoded
            measured = await self._probe(output) if step < steps else None
            current_duration = resolve_duration(measured.duration if measured else None, expected)
            current = output

        await self._report(on_progress, "stitching", 85, "Transitions applied")
        return current, current_duration, transition_calls

    async def stitch(
        self,
        clips: Sequence[SceneClip],
        job_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        output_name: Optional[str] = None,
    ) -> StitchResult:
        """
        Stitch clips into one uploaded video.

        Returns:
            StitchResult; failures are reported in it, not raised
        """
        included = [clip for clip in clips if clip.include_in_final]
        if not included:
            await self._report(on_progress, "error", 0, "No scenes to stitch")
            return StitchResult(success=False, error="No scenes to stitch")

        if len(included) == 1:
            await self._report(on_progress, "complete", 100, "Video ready!")
            return StitchResult(
                success=True,
                video_url=included[0].video_url,
                duration=included[0].duration,
                scene_count=1
            )

        ordered = auto_assign_transitions(included)
        job_id = job_id or uuid.uuid4().hex
        assets = AssetManager(job_id, base_path=self.temp_dir)
        self.logger.info("stitch_started", job_id=job_id, scene_count=len(ordered))

        try:
            await assets.create_job_directory()
            downloads = await self._download(assets, ordered, job_id, on_progress)
            normalized, durations = await self._normalize(assets, ordered, downloads, job_id, on_progress)
            final_path, expected_duration, transition_calls = await self._stitch_all(
                assets, ordered, normalized, durations, job_id, on_progress
            )

            await self._report(on_progress, "uploading", 85, "Uploading final video...")
            data = await assets.read_file(final_path)
            video_url = await self.blob_store.put_blob(
                data, output_name or f"ugc-video-{job_id}.mp4", "video/mp4"
            )
            await self._report(on_progress, "uploading", 95, "Upload complete")

            final_info = await self._probe(final_path)
            duration = final_info.duration if final_info else expected_duration

            await self._report(on_progress, "complete", 100, "Video ready!")
            self.logger.info(
                "stitch_completed",
                job_id=job_id,
                video_url=video_url,
                duration=round(duration, 3),
                expected_duration=round(expected_duration, 3),
                transition_calls=transition_calls
            )
            return StitchResult(
                success=True,
                video_url=video_url,
                duration=duration,
                scene_count=len(ordered),
                transition_calls=transition_calls
            )

        except (PipelineError, OSError) as e:
            message = e.message if isinstance(e, PipelineError) else f"Stitching failed: {e}"
            self.logger.error("stitch_failed", job_id=job_id, error=message)
            await self._report(on_progress, "error", 0, message)
            return StitchResult(success=False, error=message, scene_count=len(ordered))

        finally:
            await assets.cleanup()
