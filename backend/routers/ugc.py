"""
UGC Ad Studio API Router.

Thin HTTP layer over CreativeSessionService. Long-running stages
(characters, product shots, scene videos, stitching) answer 202 and are
observed by polling.
"""

from typing import Dict, List

from fastapi import APIRouter, Depends

from auth import get_current_owner
from dependencies import ServiceContainer, get_services
from pipeline.error_handler import ValidationError
from ugc_schemas import (
    DEMOGRAPHIC_OPTIONS,
    AcceptedResponse,
    CreateSessionRequest,
    SceneImageRequest,
    SceneVideoRequest,
    SceneVideoStatus,
    ScriptBundle,
    SelectImageRequest,
    SessionProgress,
    StartVideoRequest,
    TargetDemographic,
    UGCSession,
    UpdateScenesRequest,
    scene_index_from_id,
)

router = APIRouter(prefix="/api/ugc", tags=["UGC Ads"])


def _scene_index(scene_id: int) -> int:
    try:
        return scene_index_from_id(scene_id)
    except ValueError as e:
        raise ValidationError(str(e), details={"sceneId": scene_id}) from e


@router.get("/demographics", summary="Demographic Options")
async def get_demographic_options() -> Dict[str, List[str]]:
    """Option lists for the demographics form."""
    return DEMOGRAPHIC_OPTIONS


@router.post("/sessions", response_model=UGCSession, status_code=201, summary="Create Session")
async def create_session(
    request: CreateSessionRequest,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    return await services.creative.create_session(owner_id, request)


@router.get("/sessions", response_model=List[UGCSession], summary="List Sessions")
async def list_sessions(
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    """Caller's sessions, newest first."""
    return await services.creative.list_sessions(owner_id)


@router.get("/sessions/{session_id}", response_model=UGCSession, summary="Get Session")
async def get_session(
    session_id: str,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    return await services.creative.get_session(owner_id, session_id)


@router.delete("/sessions/{session_id}", summary="Delete Session")
async def delete_session(
    session_id: str,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    """
    Delete a session.

    Every video the session references (final video, stitched history, scene
    clips and alternates) is removed from storage before the record.
    """
    deleted = await services.creative.delete_session(owner_id, session_id)
    return {"success": True, "sessionId": session_id, "blobsDeleted": deleted}


@router.put("/sessions/{session_id}/demographics", response_model=ScriptBundle, summary="Set Demographics")
async def set_demographics(
    session_id: str,
    demographic: TargetDemographic,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    """Store the audience brief and generate the ad script (template script on failure)."""
    return await services.creative.set_demographics(owner_id, session_id, demographic)


@router.post(
    "/sessions/{session_id}/characters",
    response_model=AcceptedResponse,
    status_code=202,
    summary="Generate Characters"
)
async def generate_characters(
    session_id: str,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    await services.creative.start_character_generation(owner_id, session_id)
    return AcceptedResponse(status="generating", message="Character generation started", sessionId=session_id)


@router.put("/sessions/{session_id}/character", response_model=UGCSession, summary="Select Character")
async def select_character(
    session_id: str,
    request: SelectImageRequest,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    return await services.creative.select_character(owner_id, session_id, request.url)


@router.post(
    "/sessions/{session_id}/product-shots",
    response_model=AcceptedResponse,
    status_code=202,
    summary="Generate Product Shots"
)
async def generate_product_shots(
    session_id: str,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    await services.creative.start_product_shot_generation(owner_id, session_id)
    return AcceptedResponse(status="generating", message="Product shot generation started", sessionId=session_id)


@router.put("/sessions/{session_id}/product-shot", response_model=UGCSession, summary="Select Product Shot")
async def select_product_shot(
    session_id: str,
    request: SelectImageRequest,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    return await services.creative.select_product_shot(owner_id, session_id, request.url)


@router.put("/sessions/{session_id}/scenes", response_model=UGCSession, summary="Update Scenes")
async def update_scenes(
    session_id: str,
    request: UpdateScenesRequest,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    return await services.creative.update_scenes(owner_id, session_id, request.scenes)


@router.post("/sessions/{session_id}/scenes/{scene_id}/image", summary="Generate Scene Image")
async def generate_scene_image(
    session_id: str,
    scene_id: int,
    request: SceneImageRequest,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    """Generate a still for one scene and store it on the scene."""
    url = await services.creative.generate_scene_image(
        owner_id, session_id, _scene_index(scene_id), request.prompt
    )
    await services.creative.set_scene_image(owner_id, session_id, scene_id, url)
    return {"sceneId": scene_id, "imageUrl": url}


@router.post(
    "/sessions/{session_id}/scenes/{scene_id}/video",
    response_model=AcceptedResponse,
    status_code=202,
    summary="Generate Scene Video"
)
async def generate_scene_video(
    session_id: str,
    scene_id: int,
    request: SceneVideoRequest,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    _scene_index(scene_id)
    job_id = await services.creative.submit_scene_video(
        owner_id, session_id, scene_id, request.prompt, request.imageUrl
    )
    return AcceptedResponse(
        status="queued",
        message=f"Video generation queued for scene {scene_id}",
        sessionId=session_id,
        jobIds=[job_id]
    )


@router.post(
    "/sessions/{session_id}/scene-videos",
    response_model=AcceptedResponse,
    status_code=202,
    summary="Generate All Scene Videos"
)
async def generate_all_scene_videos(
    session_id: str,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    job_ids = await services.creative.generate_all_scene_videos(owner_id, session_id)
    return AcceptedResponse(
        status="queued",
        message=f"Video generation queued for {len(job_ids)} scenes",
        sessionId=session_id,
        jobIds=job_ids
    )


@router.get(
    "/sessions/{session_id}/scene-videos",
    response_model=List[SceneVideoStatus],
    summary="Scene Video Status"
)
async def get_scene_video_status(
    session_id: str,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    return await services.creative.get_scene_video_status(owner_id, session_id)


@router.post(
    "/sessions/{session_id}/video",
    response_model=AcceptedResponse,
    status_code=202,
    summary="Stitch Final Video"
)
async def start_video_generation(
    session_id: str,
    request: StartVideoRequest,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    job_id = await services.creative.start_video_generation(owner_id, session_id, request.scenes)
    return AcceptedResponse(
        status="generating",
        message="Video generation started",
        sessionId=session_id,
        jobIds=[job_id]
    )


@router.get("/sessions/{session_id}/progress", response_model=SessionProgress, summary="Session Progress")
async def get_session_progress(
    session_id: str,
    owner_id: str = Depends(get_current_owner),
    services: ServiceContainer = Depends(get_services),
):
    return await services.creative.get_session_progress(owner_id, session_id)
