"""
Script Generator with Gemini Integration

Two passes against the text model:
1. Product breakdown (features, benefits, pain points, hooks)
2. Structured ad script: customer avatar plus five scenes

Any failure in pass 2 (provider error, bad JSON, empty scene list) falls back
to the deterministic template script. `generate_script` never raises.
"""

import logging
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from pipeline.error_handler import UpstreamGenerationFailure
from pipeline.templates import (
    PRODUCT_ANALYST_SYSTEM_PROMPT,
    SCRIPT_WRITER_SYSTEM_PROMPT,
    build_breakdown_prompt,
    build_fallback_script,
    build_script_prompt,
    section_duration,
)
from services.genai_client import GenerativeClient
from ugc_schemas import Product, Scene, ScriptBundle, TargetDemographic

# Configure logging
logger = logging.getLogger(__name__)


class CustomerAvatar(BaseModel):
    name: str = ""
    demographics: str = ""
    backstory: str = ""
    visual_description: str


class AdScript(BaseModel):
    overall_tone: str = ""


class ProductionScene(BaseModel):
    scene: int = Field(..., ge=1)
    section: str
    visuals: str
    dialogue: str = ""
    motion: str = ""
    transitions: str = ""


class VideoAdOutput(BaseModel):
    """Structured script as returned by the text model."""
    product_name: str
    ad_format: str = ""
    target_platform: str = ""
    customer_avatar: CustomerAvatar
    video_ad_script: AdScript = Field(default_factory=AdScript)
    video_production_breakdown: List[ProductionScene]


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` (or bare ```) fence."""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def scenes_from_output(output: VideoAdOutput) -> List[Scene]:
    ordered = sorted(output.video_production_breakdown, key=lambda s: s.scene)
    return [
        Scene(
            id=index,
            title=entry.section,
            prompt=entry.visuals,
            dialogue=entry.dialogue,
            motion=entry.motion,
            transition=entry.transitions or None,
            duration=section_duration(entry.section),
        )
        # Renumber so ids are contiguous and 1-based whatever the model returned
        for index, entry in enumerate(ordered, start=1)
    ]


class ScriptGenerator:
    """
    Generates the ad script bundle for a session's demographics step.
    """

    def __init__(self, generative_client: GenerativeClient):
        self.generative_client = generative_client

    async def generate_product_breakdown(self, product: Product, demographic: TargetDemographic) -> str:
        """Product analysis text, or '' if the provider failed."""
        try:
            text = await self.generative_client.generate_text(
                build_breakdown_prompt(product, demographic),
                system_prompt=PRODUCT_ANALYST_SYSTEM_PROMPT
            )
            return text.strip()
        except UpstreamGenerationFailure as e:
            logger.warning(f"Product breakdown failed for {product.id}: {e}")
            return ""

    async def _generate_structured_script(
        self,
        product: Product,
        demographic: TargetDemographic,
        breakdown: str
    ) -> Optional[VideoAdOutput]:
        try:
            text = await self.generative_client.generate_text(
                build_script_prompt(product, demographic, breakdown),
                system_prompt=SCRIPT_WRITER_SYSTEM_PROMPT
            )
        except UpstreamGenerationFailure as e:
            logger.warning(f"Script generation failed for {product.id}: {e}")
            return None

        try:
            output = VideoAdOutput.model_validate_json(strip_code_fences(text))
        except PydanticValidationError as e:
            logger.warning(f"Invalid script JSON for {product.id}: {e.error_count()} errors")
            return None

        if not output.video_production_breakdown:
            logger.warning(f"Script for {product.id} contained no scenes")
            return None
        return output

    async def generate_script(self, product: Product, demographic: TargetDemographic) -> ScriptBundle:
        """
        Generate the full script bundle, falling back to the template script.

        Returns:
            ScriptBundle with productPrompt, productBreakdown, characterPrompt,
            scenes and (when generated) the raw structured output
        """
        breakdown = await self.generate_product_breakdown(product, demographic)
        output = await self._generate_structured_script(product, demographic, breakdown)

        if output is None:
            fallback = build_fallback_script(product, demographic)
            logger.info(f"Using fallback script for product {product.id}")
            return ScriptBundle(
                productPrompt=fallback["productPrompt"],
                productBreakdown=breakdown,
                characterPrompt=fallback["characterPrompt"],
                scenes=fallback["scenes"],
                videoAdOutput=None,
                usedFallback=True,
            )

        avatar = output.customer_avatar
        tone = output.video_ad_script.overall_tone or demographic.tone
        logger.info(
            f"Generated script for product {product.id} with "
            f"{len(output.video_production_breakdown)} scenes"
        )
        return ScriptBundle(
            productPrompt=f"{output.product_name} - A {tone} video ad targeting {avatar.demographics or demographic.describe()}",
            productBreakdown=breakdown,
            characterPrompt=avatar.visual_description,
            scenes=scenes_from_output(output),
            videoAdOutput=output.model_dump(),
            usedFallback=False,
        )
