"""
API tests for the UGC session routes.

The app's service container is replaced through dependency overrides, so no
AWS, Gemini or ffmpeg access happens. The lifespan is not entered.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from config import settings
from dependencies import get_services
from main import app
from services.usage_counter import GenerationType
from tests.fakes import BUCKET_URL
from ugc_schemas import Scene, SceneVideoJob

OWNER_HEADERS = {"X-User-Id": "user-1"}
DEMOGRAPHIC = {"ageGroup": "25-34", "gender": "Female", "interests": ["Fitness"], "tone": "Energetic"}


@pytest.fixture
def client(services, sample_product, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "")
    asyncio.run(services.catalog.put_product(sample_product))
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create_session(client) -> str:
    response = client.post("/api/ugc/sessions", json={"productId": "prod-1"}, headers=OWNER_HEADERS)
    assert response.status_code == 201
    return response.json()["id"]


class TestHealth:

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_demographic_options(self, client):
        response = client.get("/api/ugc/demographics", headers=OWNER_HEADERS)
        assert response.status_code == 200
        assert "25-34" in response.json()["ageGroups"]


class TestAuthentication:

    def test_owner_header_required(self, client):
        response = client.get("/api/ugc/sessions")
        assert response.status_code == 401

    def test_api_key_enforced_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", "secret-key")

        missing = client.get("/api/ugc/sessions", headers=OWNER_HEADERS)
        wrong = client.get("/api/ugc/sessions", headers={**OWNER_HEADERS, "X-API-Key": "nope"})
        ok = client.get("/api/ugc/sessions", headers={**OWNER_HEADERS, "X-API-Key": "secret-key"})

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert ok.status_code == 200


class TestSessions:

    def test_create_and_get(self, client):
        session_id = _create_session(client)

        response = client.get(f"/api/ugc/sessions/{session_id}", headers=OWNER_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["productId"] == "prod-1"
        assert body["currentStep"] == 0
        assert body["status"] == "draft"

    def test_create_without_product(self, client):
        response = client.post("/api/ugc/sessions", json={}, headers=OWNER_HEADERS)

        assert response.status_code == 400
        assert response.json()["error"] == "MISSING_REQUIRED_FIELD"
        assert response.json()["message"] == "Product ID is required"

    def test_unknown_product(self, client):
        response = client.post("/api/ugc/sessions", json={"productId": "nope"}, headers=OWNER_HEADERS)
        assert response.status_code == 404

    def test_sessions_are_scoped_to_owner(self, client):
        session_id = _create_session(client)
        other = {"X-User-Id": "user-2"}

        assert client.get(f"/api/ugc/sessions/{session_id}", headers=other).status_code == 404
        assert client.get("/api/ugc/sessions", headers=other).json() == []
        assert len(client.get("/api/ugc/sessions", headers=OWNER_HEADERS).json()) == 1

    def test_delete(self, client):
        session_id = _create_session(client)

        response = client.delete(f"/api/ugc/sessions/{session_id}", headers=OWNER_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"success": True, "sessionId": session_id, "blobsDeleted": 0}
        assert client.get(f"/api/ugc/sessions/{session_id}", headers=OWNER_HEADERS).status_code == 404


class TestStages:

    def test_demographics_returns_script(self, client):
        session_id = _create_session(client)

        response = client.put(
            f"/api/ugc/sessions/{session_id}/demographics", json=DEMOGRAPHIC, headers=OWNER_HEADERS
        )

        assert response.status_code == 200
        assert len(response.json()["scenes"]) == 5
        session = client.get(f"/api/ugc/sessions/{session_id}", headers=OWNER_HEADERS).json()
        assert session["currentStep"] == 1

    def test_invalid_demographic(self, client):
        session_id = _create_session(client)

        response = client.put(
            f"/api/ugc/sessions/{session_id}/demographics",
            json={**DEMOGRAPHIC, "ageGroup": "12-17"},
            headers=OWNER_HEADERS
        )

        assert response.status_code == 422

    def test_characters_before_demographics(self, client):
        session_id = _create_session(client)

        response = client.post(f"/api/ugc/sessions/{session_id}/characters", headers=OWNER_HEADERS)

        assert response.status_code == 409
        assert response.json()["error"] == "PRECONDITION_FAILED"

    def test_characters_accepted(self, client):
        session_id = _create_session(client)
        client.put(f"/api/ugc/sessions/{session_id}/demographics", json=DEMOGRAPHIC, headers=OWNER_HEADERS)

        response = client.post(f"/api/ugc/sessions/{session_id}/characters", headers=OWNER_HEADERS)

        assert response.status_code == 202
        assert response.json()["status"] == "generating"

    def test_select_character_advances_step(self, client):
        session_id = _create_session(client)
        client.put(f"/api/ugc/sessions/{session_id}/demographics", json=DEMOGRAPHIC, headers=OWNER_HEADERS)

        response = client.put(
            f"/api/ugc/sessions/{session_id}/character",
            json={"url": f"{BUCKET_URL}/images/character.png"},
            headers=OWNER_HEADERS
        )

        assert response.status_code == 200
        assert response.json()["currentStep"] == 2
        assert response.json()["selectedCharacter"] == f"{BUCKET_URL}/images/character.png"

    def test_scene_image_before_product_shot(self, client):
        session_id = _create_session(client)
        client.put(f"/api/ugc/sessions/{session_id}/demographics", json=DEMOGRAPHIC, headers=OWNER_HEADERS)

        response = client.post(
            f"/api/ugc/sessions/{session_id}/scenes/1/image", json={}, headers=OWNER_HEADERS
        )

        assert response.status_code == 409

    def test_scene_image_for_unknown_scene(self, client, services, blob_store):
        session_id = _create_session(client)
        client.put(f"/api/ugc/sessions/{session_id}/demographics", json=DEMOGRAPHIC, headers=OWNER_HEADERS)

        def select_shot(session):
            session.selectedProductImage = f"{BUCKET_URL}/images/shot-1.png"

        asyncio.run(services.sessions.update(session_id, select_shot))

        response = client.post(
            f"/api/ugc/sessions/{session_id}/scenes/42/image",
            json={"prompt": "Close-up of the serum"},
            headers=OWNER_HEADERS
        )

        assert response.status_code == 400
        assert response.json()["details"] == {"sceneId": 42}
        assert not any(name.startswith(f"scene-{session_id}-") for name in blob_store.put_names)

    def test_scene_id_zero_rejected(self, client):
        session_id = _create_session(client)

        response = client.post(
            f"/api/ugc/sessions/{session_id}/scenes/0/video", json={}, headers=OWNER_HEADERS
        )

        assert response.status_code == 400


class TestSceneVideos:

    def _session_with_scene_image(self, client, services) -> str:
        session_id = _create_session(client)
        scenes = [
            Scene(id=1, title="Hook", prompt="Holding the serum", imageUrl=f"{BUCKET_URL}/images/scene-1.png"),
            Scene(id=2, title="Problem", prompt="Dull skin"),
        ]
        response = client.put(
            f"/api/ugc/sessions/{session_id}/scenes",
            json={"scenes": [scene.model_dump(mode="json") for scene in scenes]},
            headers=OWNER_HEADERS
        )
        assert response.status_code == 200
        return session_id

    def test_submit_scene_video(self, client, services):
        session_id = self._session_with_scene_image(client, services)

        response = client.post(
            f"/api/ugc/sessions/{session_id}/scenes/1/video", json={}, headers=OWNER_HEADERS
        )

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "queued"
        assert len(body["jobIds"]) == 1

        statuses = client.get(f"/api/ugc/sessions/{session_id}/scene-videos", headers=OWNER_HEADERS).json()
        assert [status["jobId"] for status in statuses] == body["jobIds"]

    def test_scene_without_image(self, client, services):
        session_id = self._session_with_scene_image(client, services)

        response = client.post(
            f"/api/ugc/sessions/{session_id}/scenes/2/video", json={}, headers=OWNER_HEADERS
        )

        assert response.status_code == 400

    def test_fan_out_skips_scenes_without_images(self, client, services):
        session_id = self._session_with_scene_image(client, services)

        response = client.post(f"/api/ugc/sessions/{session_id}/scene-videos", headers=OWNER_HEADERS)

        assert response.status_code == 202
        assert len(response.json()["jobIds"]) == 1


class TestFinalVideo:

    def test_stitch_requires_scene_videos(self, client):
        session_id = _create_session(client)
        client.put(f"/api/ugc/sessions/{session_id}/demographics", json=DEMOGRAPHIC, headers=OWNER_HEADERS)

        response = client.post(f"/api/ugc/sessions/{session_id}/video", json={}, headers=OWNER_HEADERS)

        assert response.status_code == 409
        assert "sceneIds" in response.json()["details"]

    def test_stitch_with_no_scenes(self, client):
        session_id = _create_session(client)

        response = client.post(f"/api/ugc/sessions/{session_id}/video", json={}, headers=OWNER_HEADERS)

        assert response.status_code == 400
        assert response.json()["error"] == "NO_SCENES"

    def test_stitch_accepted_and_progress(self, client, services):
        session_id = _create_session(client)
        scenes = [
            Scene(id=1, videoUrl=f"{BUCKET_URL}/videos/scene-1.mp4").model_dump(mode="json"),
            Scene(id=2, videoUrl=f"{BUCKET_URL}/videos/scene-2.mp4").model_dump(mode="json"),
        ]

        response = client.post(
            f"/api/ugc/sessions/{session_id}/video", json={"scenes": scenes}, headers=OWNER_HEADERS
        )

        assert response.status_code == 202
        progress = client.get(f"/api/ugc/sessions/{session_id}/progress", headers=OWNER_HEADERS).json()
        assert progress["status"] in ("generating", "completed")
        assert progress["stage"] is not None

    def test_completed_job_reconciled_on_read(self, client, services):
        session_id = _create_session(client)
        client.put(f"/api/ugc/sessions/{session_id}/demographics", json=DEMOGRAPHIC, headers=OWNER_HEADERS)
        asyncio.run(services.jobs.save(SceneVideoJob(
            id="job-1",
            sessionId=session_id,
            sceneIndex=0,
            status="completed",
            progress=100,
            videoUrl=f"{BUCKET_URL}/videos/scene-1.mp4",
            prompt="p",
            imageUrl=f"{BUCKET_URL}/images/scene-1.png",
        )))

        session = client.get(f"/api/ugc/sessions/{session_id}", headers=OWNER_HEADERS).json()

        assert session["scenes"][0]["videoUrl"] == f"{BUCKET_URL}/videos/scene-1.mp4"


class TestUsage:

    def test_stats_and_reset(self, client, services):
        services.usage_counter.record(GenerationType.TEXT_TO_TEXT, "gemini", "write a script", True, 120)
        services.usage_counter.record(GenerationType.TEXT_TO_IMAGE, "gemini-image", "portrait", False, 80)

        stats = client.get("/api/usage/stats").json()
        assert stats["total"] == 2
        assert stats["successRate"]["rate"] == 50.0
        assert stats["averageResponseTimeMs"] == 100
        assert len(client.get("/api/usage/history?limit=1").json()) == 1

        assert client.post("/api/usage/reset").json() == {"success": True}
        assert client.get("/api/usage/stats").json()["total"] == 0

    def test_history_limit_validated(self, client):
        assert client.get("/api/usage/history?limit=0").status_code == 422
