"""
Pydantic schemas for UGC ad sessions.

These models double as the persisted record shape: sessions and scene video
jobs are stored as `model_dump(mode="json")` payloads and re-validated on read.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


DEMOGRAPHIC_OPTIONS: Dict[str, List[str]] = {
    "ageGroups": ["18-24", "25-34", "35-44", "45-54", "55+"],
    "genders": ["Male", "Female", "Non-binary", "All"],
    "interests": ["Fitness", "Technology", "Fashion", "Health", "Lifestyle", "Business", "Gaming", "Travel"],
    "tones": ["Professional", "Casual", "Energetic", "Luxurious", "Friendly", "Bold"],
}

# Session step ordinals
STEP_DEMOGRAPHICS = 0
STEP_CHARACTER = 1
STEP_PRODUCT_SHOT = 2
STEP_SCENES = 3
STEP_STITCHING = 4

SessionStatus = Literal["draft", "generating", "completed", "failed"]
JobStatus = Literal["queued", "generating", "completed", "failed"]
StitchStage = Literal["downloading", "processing", "stitching", "uploading", "complete", "error"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TargetDemographic(BaseModel):
    """Target audience brief for the ad."""
    ageGroup: str
    gender: str
    interests: List[str] = Field(default_factory=list)
    tone: str

    @field_validator("ageGroup")
    @classmethod
    def validate_age_group(cls, v):
        if v not in DEMOGRAPHIC_OPTIONS["ageGroups"]:
            raise ValueError(f"ageGroup must be one of {DEMOGRAPHIC_OPTIONS['ageGroups']}")
        return v

    @field_validator("gender")
    @classmethod
    def validate_gender(cls, v):
        if v not in DEMOGRAPHIC_OPTIONS["genders"]:
            raise ValueError(f"gender must be one of {DEMOGRAPHIC_OPTIONS['genders']}")
        return v

    @field_validator("interests")
    @classmethod
    def validate_interests(cls, v):
        unknown = [interest for interest in v if interest not in DEMOGRAPHIC_OPTIONS["interests"]]
        if unknown:
            raise ValueError(f"Unknown interests: {unknown}")
        return v

    @field_validator("tone")
    @classmethod
    def validate_tone(cls, v):
        if v not in DEMOGRAPHIC_OPTIONS["tones"]:
            raise ValueError(f"tone must be one of {DEMOGRAPHIC_OPTIONS['tones']}")
        return v

    def describe(self) -> str:
        """Human readable summary used inside prompts."""
        interests = ", ".join(self.interests) if self.interests else "general interests"
        return f"{self.gender}, aged {self.ageGroup}, interested in {interests}"

    class Config:
        json_schema_extra = {
            "example": {
                "ageGroup": "25-34",
                "gender": "Female",
                "interests": ["Fitness", "Lifestyle"],
                "tone": "Energetic"
            }
        }


class SubVideo(BaseModel):
    """An alternate clip generated for a scene."""
    url: str
    createdAt: datetime = Field(default_factory=utc_now)


class Scene(BaseModel):
    """
    One shot of the ad script.

    `id` is 1-based; scene video jobs are keyed by `id - 1`.
    """
    id: int = Field(..., ge=1)
    title: str = ""
    prompt: str = Field("", description="Visuals prompt used for image and video generation")
    dialogue: str = ""
    motion: str = ""
    transition: Optional[str] = Field(None, description="Transition into the next scene")
    duration: float = Field(4.0, gt=0)
    imageUrl: Optional[str] = None
    videoUrl: Optional[str] = None
    includeInFinal: bool = True
    subVideos: List[SubVideo] = Field(default_factory=list)

    @property
    def scene_index(self) -> int:
        return scene_index_from_id(self.id)


def scene_index_from_id(scene_id: int) -> int:
    """Convert a 1-based scene id into the 0-based index used for job keys."""
    if scene_id < 1:
        raise ValueError("scene id must be 1 or greater")
    return scene_id - 1


class GeneratedImage(BaseModel):
    """A candidate character portrait or product-composite image."""
    id: str
    url: str
    selected: bool = False
    placeholder: bool = False


class StitchedVideo(BaseModel):
    """A previously stitched final video."""
    url: str
    createdAt: datetime = Field(default_factory=utc_now)
    sceneCount: int
    duration: Optional[float] = None


class UGCSession(BaseModel):
    """One creative project, persisted as a single record."""
    id: str
    ownerId: str
    productId: str
    title: Optional[str] = None
    targetDemographic: Optional[TargetDemographic] = None

    productPrompt: Optional[str] = None
    productBreakdown: Optional[str] = None
    characterPrompt: Optional[str] = None
    videoAdOutput: Optional[Dict[str, Any]] = None

    generatedCharacters: List[GeneratedImage] = Field(default_factory=list)
    selectedCharacter: Optional[str] = None
    generatedProductImages: List[GeneratedImage] = Field(default_factory=list)
    selectedProductImage: Optional[str] = None

    scenes: List[Scene] = Field(default_factory=list)

    videoUrl: Optional[str] = None
    stitchedVideos: List[StitchedVideo] = Field(default_factory=list)
    videoProgress: int = Field(0, ge=0, le=100)

    currentStep: int = Field(STEP_DEMOGRAPHICS, ge=STEP_DEMOGRAPHICS, le=STEP_STITCHING)
    status: SessionStatus = "draft"
    errorMessage: Optional[str] = None

    createdAt: datetime = Field(default_factory=utc_now)
    updatedAt: datetime = Field(default_factory=utc_now)

    def advance_step(self, step: int) -> None:
        """Move currentStep forward; never backwards."""
        self.currentStep = max(self.currentStep, step)

    def blob_urls(self) -> List[str]:
        """Every blob URL referenced by this session that deletion must clean up."""
        urls: List[str] = []
        if self.videoUrl:
            urls.append(self.videoUrl)
        urls.extend(video.url for video in self.stitchedVideos)
        for scene in self.scenes:
            if scene.videoUrl:
                urls.append(scene.videoUrl)
            urls.extend(sub.url for sub in scene.subVideos)
        # Stitched history normally contains the current videoUrl too
        return list(dict.fromkeys(urls))


class SceneVideoJob(BaseModel):
    """One asynchronous image-to-video job for a scene."""
    id: str
    sessionId: str
    sceneIndex: int = Field(..., ge=0)
    status: JobStatus = "queued"
    progress: int = Field(0, ge=0, le=100)
    videoUrl: Optional[str] = None
    errorMessage: Optional[str] = None
    prompt: str
    imageUrl: str
    createdAt: datetime = Field(default_factory=utc_now)
    updatedAt: datetime = Field(default_factory=utc_now)


class StitchProgress(BaseModel):
    """Live progress of a stitching job. Never persisted."""
    stage: StitchStage
    progress: int = Field(..., ge=0, le=100)
    message: str = ""


class Product(BaseModel):
    """Catalog product as read by the pipeline."""
    id: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None
    imageUrl: Optional[str] = None


# ===== Request / response models =====

class CreateSessionRequest(BaseModel):
    productId: Optional[str] = Field(None, description="Catalog product the ad is for")
    title: Optional[str] = Field(None, max_length=200)

    class Config:
        json_schema_extra = {
            "example": {"productId": "prod-123", "title": "Summer launch"}
        }


class SelectImageRequest(BaseModel):
    url: str = Field(..., min_length=1)


class UpdateScenesRequest(BaseModel):
    scenes: List[Scene]


class SceneImageRequest(BaseModel):
    prompt: Optional[str] = Field(None, description="Visuals prompt; defaults to the scene's prompt")


class SceneVideoRequest(BaseModel):
    prompt: Optional[str] = Field(None, description="Video prompt; defaults to one built from the scene")
    imageUrl: Optional[str] = Field(None, description="Source frame; defaults to the scene's image")


class StartVideoRequest(BaseModel):
    scenes: Optional[List[Scene]] = Field(None, description="Scenes to stitch; defaults to the session's scenes")


class ScriptBundle(BaseModel):
    productPrompt: str
    productBreakdown: str = ""
    characterPrompt: str
    scenes: List[Scene]
    videoAdOutput: Optional[Dict[str, Any]] = None
    usedFallback: bool = False


class SessionProgress(BaseModel):
    progress: int
    status: SessionStatus
    videoUrl: Optional[str] = None
    stitchedVideos: List[StitchedVideo] = Field(default_factory=list)
    stage: Optional[StitchStage] = None
    message: Optional[str] = None
    errorMessage: Optional[str] = None


class SceneVideoStatus(BaseModel):
    jobId: str
    sceneIndex: int
    status: JobStatus
    progress: int
    videoUrl: Optional[str] = None
    errorMessage: Optional[str] = None


class AcceptedResponse(BaseModel):
    status: str
    message: str
    sessionId: str
    jobIds: List[str] = Field(default_factory=list)
