"""
Error types for the UGC ad pipeline.

Every failure carries an ErrorCode. The code decides the HTTP status the API
answers with and the fallback message shown to users when the raiser did not
supply one.
"""

from enum import Enum
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    # Client errors
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    PRODUCT_NOT_FOUND = "PRODUCT_NOT_FOUND"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    NO_SCENES = "NO_SCENES"

    # Provider returned nothing usable
    TEXT_GENERATION_FAILED = "TEXT_GENERATION_FAILED"
    IMAGE_GENERATION_FAILED = "IMAGE_GENERATION_FAILED"
    VIDEO_GENERATION_FAILED = "VIDEO_GENERATION_FAILED"
    API_TIMEOUT = "API_TIMEOUT"

    # Stitching
    ASSET_DOWNLOAD_FAILED = "ASSET_DOWNLOAD_FAILED"
    FFMPEG_ERROR = "FFMPEG_ERROR"

    # Infrastructure
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


# code -> (http status, default user message)
_CODE_TABLE = {
    ErrorCode.INVALID_INPUT: (400, "Please check your input and try again."),
    ErrorCode.MISSING_REQUIRED_FIELD: (400, "Required field is missing. Please check your request."),
    ErrorCode.SESSION_NOT_FOUND: (404, "Session not found."),
    ErrorCode.PRODUCT_NOT_FOUND: (404, "Product not found."),
    ErrorCode.PRECONDITION_FAILED: (409, "Please complete the previous step first."),
    ErrorCode.NO_SCENES: (400, "No scenes to stitch."),
    ErrorCode.TEXT_GENERATION_FAILED: (502, "Failed to generate script. Please try again."),
    ErrorCode.IMAGE_GENERATION_FAILED: (502, "Failed to generate image. Please try again."),
    ErrorCode.VIDEO_GENERATION_FAILED: (502, "Failed to generate video. Please try again."),
    ErrorCode.API_TIMEOUT: (504, "Video generation timed out. Please try again."),
    ErrorCode.ASSET_DOWNLOAD_FAILED: (502, "Failed to download asset. Please check the URL and try again."),
    ErrorCode.FFMPEG_ERROR: (500, "Video processing error. Please try again or contact support."),
    ErrorCode.STORE_UNAVAILABLE: (503, "Storage temporarily unavailable. Please try again."),
}

_TRANSIENT_CODES = {
    ErrorCode.ASSET_DOWNLOAD_FAILED,
    ErrorCode.STORE_UNAVAILABLE,
}


class PipelineError(Exception):
    """
    Base exception for pipeline errors.

    `message` is the detailed text for logs; `user_message` overrides the
    code's default text in API responses and session error fields.

    Example:
        >>> raise PipelineError(ErrorCode.INVALID_INPUT, "Product id is required", {"field": "productId"})
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self._user_message = user_message
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return _CODE_TABLE.get(self.code, (500, ""))[0]

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.http_status < 500

    def get_user_friendly_message(self) -> str:
        if self._user_message:
            return self._user_message
        entry = _CODE_TABLE.get(self.code)
        return entry[1] if entry else "An error occurred. Please try again or contact support."

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code.value,
            "message": self.get_user_friendly_message(),
            "details": self.details,
        }

    def log_error(self) -> None:
        """Client and transient errors log at WARNING, everything else at ERROR."""
        summary = f"{self.code.value} {self.message} details={self.details}"
        if self.is_client_error:
            logger.warning(f"Client error: {summary}")
        elif should_retry(self):
            logger.warning(f"Retryable error: {summary}")
        else:
            logger.error(f"Pipeline error: {summary}")

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


def should_retry(error: Exception) -> bool:
    """
    Whether a failure is transient at the transport level.

    Stage operations are never retried as a whole; this only classifies
    network failures such as reference image and clip downloads.

    Example:
        >>> should_retry(PipelineError(ErrorCode.ASSET_DOWNLOAD_FAILED, "reset"))
        True
        >>> should_retry(ValidationError("Bad input"))
        False
    """
    if isinstance(error, PipelineError):
        return error.code in _TRANSIENT_CODES
    return isinstance(error, (TimeoutError, ConnectionError))


def get_retry_delay(attempt: int, base_delay: float = 2.0, max_delay: float = 60.0) -> float:
    """
    Exponential backoff: min(base_delay * 2 ** attempt, max_delay).

    Example:
        >>> get_retry_delay(0)
        2.0
        >>> get_retry_delay(2)
        8.0
        >>> get_retry_delay(10)
        60.0
    """
    return min(base_delay * (2 ** attempt), max_delay)


class ValidationError(PipelineError):
    """Missing or malformed request input."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict] = None):
        error_details = dict(details or {})
        if field:
            error_details["field"] = field
        code = ErrorCode.MISSING_REQUIRED_FIELD if field else ErrorCode.INVALID_INPUT
        super().__init__(code, message, error_details, user_message=message)


class NotFoundError(PipelineError):
    """A session or product does not exist, or belongs to another owner."""

    def __init__(self, entity: str, entity_id: str):
        code = ErrorCode.PRODUCT_NOT_FOUND if entity == "product" else ErrorCode.SESSION_NOT_FOUND
        super().__init__(code, f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})


class PreconditionFailed(PipelineError):
    """A stage was requested before the stage it depends on completed."""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(ErrorCode.PRECONDITION_FAILED, message, details, user_message=message)


_GENERATION_CODES = {
    "text": ErrorCode.TEXT_GENERATION_FAILED,
    "image": ErrorCode.IMAGE_GENERATION_FAILED,
    "video": ErrorCode.VIDEO_GENERATION_FAILED,
}


class UpstreamGenerationFailure(PipelineError):
    """The generative provider returned no usable payload."""

    def __init__(self, kind: str, message: str, details: Optional[Dict] = None):
        error_details = dict(details or {})
        error_details["kind"] = kind
        super().__init__(_GENERATION_CODES.get(kind, ErrorCode.VIDEO_GENERATION_FAILED), message, error_details)


class GenerationTimeout(PipelineError):
    """Image-to-video polling exceeded its attempt budget."""

    def __init__(self, message: str = "Video generation timed out", polls: Optional[int] = None):
        details = {"polls": polls} if polls is not None else {}
        super().__init__(ErrorCode.API_TIMEOUT, message, details, user_message=message)


class StoreUnavailable(PipelineError):
    """The durable record store could not be reached."""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(ErrorCode.STORE_UNAVAILABLE, message, details)


class MediaProcessingFailure(PipelineError):
    """Download or ffmpeg failure while assembling media."""

    def __init__(self, message: str, details: Optional[Dict] = None, download: bool = False):
        code = ErrorCode.ASSET_DOWNLOAD_FAILED if download else ErrorCode.FFMPEG_ERROR
        super().__init__(code, message, details, user_message=message)
