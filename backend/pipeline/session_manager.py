"""
Creative session state machine.

Sequences the five creative stages of a UGC ad session and persists the
session after each one:

    demographics -> character -> product shot -> scenes -> stitching

Stages with a safe degraded output (template script, placeholder images)
always produce something. Stages without one (scene video, final stitch)
are handed to the job workers and end in a `failed` status on error.
"""

import asyncio
import time
import uuid
from typing import List, Optional, Sequence

import structlog

from pipeline.error_handler import (
    MediaProcessingFailure,
    PipelineError,
    PreconditionFailed,
    UpstreamGenerationFailure,
    ValidationError,
)
from pipeline.script_generator import ScriptGenerator
from pipeline.templates import (
    CHARACTER_VARIATIONS,
    DEFAULT_PRODUCT_IMAGE_URL,
    PRODUCT_SHOT_VARIATIONS,
    build_character_prompt,
    build_product_shot_prompt,
    build_scene_image_prompt,
    build_scene_video_prompt,
    get_placeholder_urls,
)
from services.genai_client import GeneratedMedia
from services.session_store import ProductCatalog, SceneVideoJobRepository, SessionRepository
from ugc_schemas import (
    STEP_CHARACTER,
    STEP_PRODUCT_SHOT,
    STEP_SCENES,
    CreateSessionRequest,
    GeneratedImage,
    Scene,
    ScriptBundle,
    SessionProgress,
    TargetDemographic,
    UGCSession,
    scene_index_from_id,
)
from workers.scene_video_worker import SceneVideoJobProcessor
from workers.stitch_worker import StitchJobRunner
from workers.tasks import TaskTracker

logger = structlog.get_logger()

IMAGE_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp"}


def image_extension(mime_type: str) -> str:
    return IMAGE_EXTENSIONS.get(mime_type, "png")


def placeholder_images(kind: str) -> List[GeneratedImage]:
    prefix = "char" if kind == "character" else "shot"
    return [
        GeneratedImage(id=f"{prefix}-placeholder-{i}", url=url, placeholder=True)
        for i, url in enumerate(get_placeholder_urls(kind), start=1)
    ]


class CreativeSessionService:
    """
    Stage operations for UGC sessions.

    Every public operation takes the caller's owner id; sessions owned by
    someone else are reported as not found.
    """

    def __init__(
        self,
        sessions: SessionRepository,
        jobs: SceneVideoJobRepository,
        catalog: ProductCatalog,
        script_generator: ScriptGenerator,
        generative_client,
        fetcher,
        blob_store,
        scene_jobs: SceneVideoJobProcessor,
        stitch_runner: StitchJobRunner,
        tracker: TaskTracker,
    ):
        self.sessions = sessions
        self.jobs = jobs
        self.catalog = catalog
        self.script_generator = script_generator
        self.generative_client = generative_client
        self.fetcher = fetcher
        self.blob_store = blob_store
        self.scene_jobs = scene_jobs
        self.stitch_runner = stitch_runner
        self.tracker = tracker
        self.logger = logger.bind(service="creative_sessions")

    # ===== Session CRUD =====

    async def create_session(self, owner_id: str, request: CreateSessionRequest) -> UGCSession:
        if not request.productId:
            raise ValidationError("Product ID is required", field="productId")
        await self.catalog.get_product(request.productId)

        session = UGCSession(
            id=str(uuid.uuid4()),
            ownerId=owner_id,
            productId=request.productId,
            title=request.title,
        )
        await self.sessions.save(session)
        self.logger.info("session_created", session_id=session.id, product_id=session.productId)
        return session

    async def list_sessions(self, owner_id: str) -> List[UGCSession]:
        sessions = await self.sessions.list_for_owner(owner_id)
        return sorted(sessions, key=lambda session: session.createdAt, reverse=True)

    async def get_session(self, owner_id: str, session_id: str) -> UGCSession:
        """Load a session with scene clip URLs reconciled from completed job rows."""
        session = await self.sessions.get_owned(owner_id, session_id)
        completed = {
            job.sceneIndex: job.videoUrl
            for job in await self.jobs.list_for_session(session_id)
            if job.status == "completed" and job.videoUrl
        }
        for scene in session.scenes:
            video_url = completed.get(scene.scene_index)
            if video_url and scene.videoUrl != video_url:
                scene.videoUrl = video_url
        return session

    async def delete_session(self, owner_id: str, session_id: str) -> int:
        """
        Delete every blob the session references, then its records.

        Returns:
            Number of blobs deleted
        """
        session = await self.get_session(owner_id, session_id)
        urls = session.blob_urls()
        results = await asyncio.gather(*[self.blob_store.delete_blob(url) for url in urls])
        deleted = sum(1 for ok in results if ok)
        if deleted < len(urls):
            self.logger.warning(
                "session_blobs_not_deleted",
                session_id=session_id,
                failed=[url for url, ok in zip(urls, results) if not ok]
            )
        await self.sessions.delete(session_id)
        self.scene_jobs.forget_session(session_id)
        self.logger.info("session_deleted", session_id=session_id, blobs_deleted=deleted)
        return deleted

    # ===== Stage 0: demographics and script =====

    async def set_demographics(
        self,
        owner_id: str,
        session_id: str,
        demographic: TargetDemographic
    ) -> ScriptBundle:
        session = await self.sessions.get_owned(owner_id, session_id)
        product = await self.catalog.get_product(session.productId)
        bundle = await self.script_generator.generate_script(product, demographic)

        def apply(stored: UGCSession) -> None:
            stored.targetDemographic = demographic
            stored.productPrompt = bundle.productPrompt
            stored.productBreakdown = bundle.productBreakdown
            stored.characterPrompt = bundle.characterPrompt
            stored.videoAdOutput = bundle.videoAdOutput
            stored.scenes = [scene.model_copy(deep=True) for scene in bundle.scenes]
            stored.advance_step(STEP_CHARACTER)

        await self.sessions.update(session_id, apply)
        self.logger.info(
            "demographics_set",
            session_id=session_id,
            scene_count=len(bundle.scenes),
            used_fallback=bundle.usedFallback
        )
        return bundle

    # ===== Shared image helpers =====

    async def _generate_and_upload(
        self,
        prompt: str,
        references: Optional[List[GeneratedMedia]],
        name_prefix: str
    ) -> Optional[str]:
        media = await self.generative_client.generate_image(prompt, references)
        if media is None:
            return None
        name = f"{name_prefix}-{int(time.time() * 1000)}.{image_extension(media.mime_type)}"
        return await self.blob_store.put_blob(media.data, name, media.mime_type)

    async def _generate_candidates(
        self,
        prompts: Sequence[str],
        references: Optional[List[GeneratedMedia]],
        name_prefix: str,
        kind: str
    ) -> List[GeneratedImage]:
        urls = await asyncio.gather(*[
            self._generate_and_upload(prompt, references, f"{name_prefix}-{i}")
            for i, prompt in enumerate(prompts, start=1)
        ])
        id_prefix = "char" if kind == "character" else "shot"
        images = [
            GeneratedImage(id=f"{id_prefix}-{i}", url=url)
            for i, url in enumerate(urls, start=1)
            if url
        ]
        if not images:
            self.logger.warning("image_candidates_all_failed", kind=kind, attempts=len(prompts))
            return placeholder_images(kind)
        return images

    def _start_background_stage(self, session_id: str, stage: str, coro) -> None:
        async def run() -> None:
            try:
                await coro
            except Exception as e:
                message = e.get_user_friendly_message() if isinstance(e, PipelineError) else f"Failed to generate {stage.replace('_', ' ')}"
                self.logger.error("stage_failed", session_id=session_id, stage=stage, error=str(e))

                def fail(session: UGCSession) -> None:
                    session.status = "failed"
                    session.errorMessage = message

                await self.sessions.update(session_id, fail)

        self.tracker.spawn(run(), name=f"{stage}-{session_id}", session_id=session_id, stage=stage)

    async def _mark_generating(self, session_id: str) -> None:
        def apply(session: UGCSession) -> None:
            session.status = "generating"
            session.errorMessage = None

        await self.sessions.update(session_id, apply)

    # ===== Stage 1: characters =====

    @staticmethod
    def _character_description(session: UGCSession) -> Optional[str]:
        avatar = (session.videoAdOutput or {}).get("customer_avatar") or {}
        return session.characterPrompt or avatar.get("visual_description")

    async def generate_characters(self, owner_id: str, session_id: str) -> List[GeneratedImage]:
        """
        Generate four character portraits in parallel.

        Raises:
            PreconditionFailed: no character description exists yet
        """
        session = await self.sessions.get_owned(owner_id, session_id)
        description = self._character_description(session)
        if not description:
            raise PreconditionFailed(
                "No character description available. Please complete the demographics step first."
            )

        avatar = (session.videoAdOutput or {}).get("customer_avatar") or {}
        prompts = [build_character_prompt(avatar, description, variation) for variation in CHARACTER_VARIATIONS]
        images = await self._generate_candidates(prompts, None, f"character-{session_id}", "character")

        def apply(stored: UGCSession) -> None:
            stored.generatedCharacters = images

        await self.sessions.update(session_id, apply)
        self.logger.info(
            "characters_generated",
            session_id=session_id,
            count=len(images),
            placeholders=all(image.placeholder for image in images)
        )
        return images

    async def start_character_generation(self, owner_id: str, session_id: str) -> None:
        """Check the precondition, mark the session generating and run generation in the background."""
        session = await self.sessions.get_owned(owner_id, session_id)
        if not self._character_description(session):
            raise PreconditionFailed(
                "No character description available. Please complete the demographics step first."
            )
        await self._mark_generating(session_id)
        self._start_background_stage(session_id, "characters", self.generate_characters(owner_id, session_id))

    async def select_character(self, owner_id: str, session_id: str, url: str) -> UGCSession:
        await self.sessions.get_owned(owner_id, session_id)

        def apply(session: UGCSession) -> None:
            session.selectedCharacter = url
            for image in session.generatedCharacters:
                image.selected = image.url == url
            session.advance_step(STEP_PRODUCT_SHOT)
            session.status = "completed"

        return await self.sessions.update(session_id, apply)

    # ===== Stage 2: product shots =====

    async def generate_product_shots(self, owner_id: str, session_id: str) -> List[GeneratedImage]:
        """
        Generate four character-with-product composites in parallel.

        Raises:
            PreconditionFailed: no character has been selected
        """
        session = await self.sessions.get_owned(owner_id, session_id)
        if not session.selectedCharacter:
            raise PreconditionFailed("No character selected. Please complete the character step first.")
        product = await self.catalog.get_product(session.productId)

        character, product_image = await asyncio.gather(
            self.fetcher.fetch(session.selectedCharacter),
            self.fetcher.fetch(product.imageUrl or DEFAULT_PRODUCT_IMAGE_URL),
        )

        if character is None or product_image is None:
            self.logger.warning(
                "product_shot_reference_fetch_failed",
                session_id=session_id,
                character_fetched=character is not None,
                product_fetched=product_image is not None
            )
            images = placeholder_images("product_shot")
        else:
            description = self._character_description(session) or ""
            prompts = [
                build_product_shot_prompt(product, variation, description)
                for variation in PRODUCT_SHOT_VARIATIONS
            ]
            images = await self._generate_candidates(
                prompts, [character, product_image], f"product-shot-{session_id}", "product_shot"
            )

        def apply(stored: UGCSession) -> None:
            stored.generatedProductImages = images

        await self.sessions.update(session_id, apply)
        self.logger.info("product_shots_generated", session_id=session_id, count=len(images))
        return images

    async def start_product_shot_generation(self, owner_id: str, session_id: str) -> None:
        session = await self.sessions.get_owned(owner_id, session_id)
        if not session.selectedCharacter:
            raise PreconditionFailed("No character selected. Please complete the character step first.")
        await self._mark_generating(session_id)
        self._start_background_stage(session_id, "product_shots", self.generate_product_shots(owner_id, session_id))

    async def select_product_shot(self, owner_id: str, session_id: str, url: str) -> UGCSession:
        await self.sessions.get_owned(owner_id, session_id)

        def apply(session: UGCSession) -> None:
            session.selectedProductImage = url
            for image in session.generatedProductImages:
                image.selected = image.url == url
            session.advance_step(STEP_SCENES)
            session.status = "completed"

        return await self.sessions.update(session_id, apply)

    # ===== Stage 3: scenes =====

    async def update_scenes(self, owner_id: str, session_id: str, scenes: List[Scene]) -> UGCSession:
        await self.sessions.get_owned(owner_id, session_id)

        def apply(session: UGCSession) -> None:
            session.scenes = scenes

        return await self.sessions.update(session_id, apply)

    async def generate_scene_image(
        self,
        owner_id: str,
        session_id: str,
        scene_index: int,
        visuals_prompt: Optional[str] = None
    ) -> str:
        """
        Generate one scene still using the selected product shot as reference.

        Raises:
            ValidationError: no scene has this index, or there is no prompt

        Returns:
            URL of the uploaded image. The caller writes it into the scene.
        """
        session = await self.sessions.get_owned(owner_id, session_id)
        if not session.selectedProductImage:
            raise PreconditionFailed("No product image selected. Please complete the Product Shot step first.")
        if scene_index < 0:
            raise ValidationError("sceneIndex must be 0 or greater", details={"sceneIndex": scene_index})

        # An unknown scene fails before anything is generated or uploaded
        scene = next((s for s in session.scenes if s.scene_index == scene_index), None)
        if scene is None:
            raise ValidationError(
                f"Scene {scene_index + 1} does not exist",
                details={"sceneId": scene_index + 1}
            )
        prompt = visuals_prompt or scene.prompt
        if not prompt:
            raise ValidationError("A visuals prompt is required", field="prompt")

        reference = await self.fetcher.fetch(session.selectedProductImage)
        if reference is None:
            raise MediaProcessingFailure(
                "Failed to fetch product image",
                {"url": session.selectedProductImage},
                download=True
            )

        url = await self._generate_and_upload(
            build_scene_image_prompt(prompt),
            [reference],
            f"scene-{session_id}-{scene_index + 1}"
        )
        if url is None:
            raise UpstreamGenerationFailure("image", "Failed to generate scene image", {"sceneIndex": scene_index})
        self.logger.info("scene_image_generated", session_id=session_id, scene_index=scene_index, url=url)
        return url

    async def set_scene_image(self, owner_id: str, session_id: str, scene_id: int, url: str) -> UGCSession:
        await self.sessions.get_owned(owner_id, session_id)

        def apply(session: UGCSession) -> None:
            for scene in session.scenes:
                if scene.id == scene_id:
                    scene.imageUrl = url
                    return
            raise ValidationError(f"Scene {scene_id} does not exist", details={"sceneId": scene_id})

        return await self.sessions.update(session_id, apply)

    async def _scene_for(self, owner_id: str, session_id: str, scene_id: int) -> Scene:
        session = await self.get_session(owner_id, session_id)
        for scene in session.scenes:
            if scene.id == scene_id:
                return scene
        raise ValidationError(f"Scene {scene_id} does not exist", details={"sceneId": scene_id})

    # ===== Stage 4: scene videos and stitching =====

    async def submit_scene_video(
        self,
        owner_id: str,
        session_id: str,
        scene_id: int,
        prompt: Optional[str] = None,
        image_url: Optional[str] = None
    ) -> str:
        scene = await self._scene_for(owner_id, session_id, scene_id)
        return await self.scene_jobs.submit_scene_video_job(
            session_id,
            scene_index_from_id(scene_id),
            prompt or build_scene_video_prompt(scene),
            image_url or scene.imageUrl
        )

    async def generate_all_scene_videos(self, owner_id: str, session_id: str) -> List[str]:
        session = await self.get_session(owner_id, session_id)
        return await self.scene_jobs.generate_all_scene_videos(session_id, session.scenes)

    async def get_scene_video_status(self, owner_id: str, session_id: str):
        await self.sessions.get_owned(owner_id, session_id)
        return await self.scene_jobs.get_scene_video_status(session_id)

    async def start_video_generation(
        self,
        owner_id: str,
        session_id: str,
        scenes: Optional[List[Scene]] = None
    ) -> str:
        session = await self.get_session(owner_id, session_id)
        return await self.stitch_runner.start(session_id, scenes if scenes is not None else session.scenes)

    async def get_session_progress(self, owner_id: str, session_id: str) -> SessionProgress:
        """Live stitching progress when a stitch is running, otherwise the persisted value."""
        session = await self.sessions.get_owned(owner_id, session_id)
        live = self.stitch_runner.get_live_progress(session_id)
        if live is not None:
            return SessionProgress(
                progress=live.progress,
                status=session.status,
                videoUrl=session.videoUrl,
                stitchedVideos=session.stitchedVideos,
                stage=live.stage,
                message=live.message,
                errorMessage=session.errorMessage,
            )
        return SessionProgress(
            progress=session.videoProgress,
            status=session.status,
            videoUrl=session.videoUrl,
            stitchedVideos=session.stitchedVideos,
            errorMessage=session.errorMessage,
        )
