"""
Configuration for the UGC ad backend, read from the environment (and .env)
"""

import os
from typing import Optional, Tuple
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


class Settings:
    """Application settings"""

    # Application
    DEBUG: bool = _flag("DEBUG", False)
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = _int("API_PORT", 8000)
    # Comma-separated; empty disables the /api key check
    API_KEY: str = os.getenv("API_KEY", "")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:3000")

    # Gemini
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    GEMINI_TEXT_MODEL: str = os.getenv("GEMINI_TEXT_MODEL", "gemini-2.0-flash")
    GEMINI_IMAGE_MODEL: str = os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.0-flash-exp-image-generation")
    GEMINI_VIDEO_MODEL: str = os.getenv("GEMINI_VIDEO_MODEL", "veo-3.0-fast-generate-001")

    # Image-to-video polling: 60 polls at 10s is roughly a 10 minute budget
    VIDEO_POLL_INTERVAL_SECONDS: float = _float("VIDEO_POLL_INTERVAL_SECONDS", 10)
    VIDEO_MAX_POLLS: int = _int("VIDEO_MAX_POLLS", 60)
    VIDEO_EXPECTED_POLLS: int = _int("VIDEO_EXPECTED_POLLS", 12)

    # Blob storage (S3)
    STORAGE_BUCKET: str = os.getenv("STORAGE_BUCKET", "socialcommerce-videos")
    AWS_ACCESS_KEY_ID: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    AWS_SECRET_ACCESS_KEY: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")

    # Record store (DynamoDB single table)
    DYNAMODB_TABLE_NAME: str = os.getenv("DYNAMODB_TABLE_NAME", "UGCSessions")
    DYNAMODB_REGION: str = os.getenv("DYNAMODB_REGION", "us-east-1")
    DYNAMODB_ENDPOINT: str = os.getenv("DYNAMODB_ENDPOINT", "http://localhost:8001")
    USE_LOCAL_DYNAMODB: bool = _flag("USE_LOCAL_DYNAMODB", True)

    # Usage counters, optionally mirrored to Redis
    USAGE_HISTORY_LIMIT: int = _int("USAGE_HISTORY_LIMIT", 100)
    USAGE_PERSIST_TO_REDIS: bool = _flag("USAGE_PERSIST_TO_REDIS", False)
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    REDIS_MAX_CONNECTIONS: int = _int("REDIS_MAX_CONNECTIONS", 10)
    REDIS_SOCKET_TIMEOUT: int = _int("REDIS_SOCKET_TIMEOUT", 5)
    REDIS_SOCKET_CONNECT_TIMEOUT: int = _int("REDIS_SOCKET_CONNECT_TIMEOUT", 5)
    REDIS_RETRY_ON_TIMEOUT: bool = _flag("REDIS_RETRY_ON_TIMEOUT", True)
    REDIS_HEALTH_CHECK_INTERVAL: int = _int("REDIS_HEALTH_CHECK_INTERVAL", 30)

    # Stitching
    FFMPEG_PATH: str = os.getenv("FFMPEG_PATH", "ffmpeg")
    STITCH_TRANSITION_DURATION: float = _float("STITCH_TRANSITION_DURATION", 0.5)
    STITCH_FPS: int = _int("STITCH_FPS", 30)
    STITCH_TARGET_RESOLUTION: Optional[str] = os.getenv("STITCH_TARGET_RESOLUTION")  # e.g. "1080x1920"
    STITCH_TEMP_DIR: str = os.getenv("STITCH_TEMP_DIR", "/tmp/video-stitcher")
    STITCH_PROGRESS_TTL_SECONDS: float = _float("STITCH_PROGRESS_TTL_SECONDS", 60)

    @property
    def dynamodb_access_key_id(self) -> str:
        # DynamoDB Local accepts any credentials but requires some
        if self.USE_LOCAL_DYNAMODB:
            return self.AWS_ACCESS_KEY_ID or "fakeAccessKey"
        return self.AWS_ACCESS_KEY_ID

    @property
    def dynamodb_secret_access_key(self) -> str:
        if self.USE_LOCAL_DYNAMODB:
            return self.AWS_SECRET_ACCESS_KEY or "fakeSecretKey"
        return self.AWS_SECRET_ACCESS_KEY

    def validate_dynamodb_config(self) -> None:
        """Raise ValueError when the real DynamoDB is selected without credentials."""
        if self.USE_LOCAL_DYNAMODB:
            return
        for name in ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"):
            if not getattr(self, name):
                raise ValueError(f"{name} is required when USE_LOCAL_DYNAMODB=false")

    @property
    def cors_origins_list(self) -> list:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def stitch_target_resolution(self) -> Optional[Tuple[int, int]]:
        """STITCH_TARGET_RESOLUTION ("WxH") as (width, height)"""
        if not self.STITCH_TARGET_RESOLUTION:
            return None
        width, _, height = self.STITCH_TARGET_RESOLUTION.lower().partition("x")
        return int(width), int(height)


settings = Settings()
