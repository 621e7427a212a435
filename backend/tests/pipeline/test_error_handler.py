"""
Tests for the pipeline error taxonomy.
"""

import pytest

from pipeline.error_handler import (
    _CODE_TABLE,
    ErrorCode,
    GenerationTimeout,
    MediaProcessingFailure,
    NotFoundError,
    PipelineError,
    PreconditionFailed,
    StoreUnavailable,
    UpstreamGenerationFailure,
    ValidationError,
    get_retry_delay,
    should_retry,
)


class TestHttpStatus:

    @pytest.mark.parametrize("error, status", [
        (ValidationError("Product ID is required", field="productId"), 400),
        (ValidationError("Scene id must be positive"), 400),
        (NotFoundError("session", "s1"), 404),
        (NotFoundError("product", "p1"), 404),
        (PreconditionFailed("Select a character first"), 409),
        (UpstreamGenerationFailure("image", "empty"), 502),
        (StoreUnavailable("down"), 503),
        (MediaProcessingFailure("ffmpeg exited 1"), 500),
        (GenerationTimeout(polls=60), 504),
    ])
    def test_status_by_type(self, error, status):
        assert error.http_status == status

    def test_missing_field_code(self):
        assert ValidationError("Product ID is required", field="productId").code == ErrorCode.MISSING_REQUIRED_FIELD
        assert ValidationError("bad").code == ErrorCode.INVALID_INPUT


class TestMessages:

    def test_to_dict_uses_user_message(self):
        error = PreconditionFailed("Select a character first", {"step": 1})

        assert error.to_dict() == {
            "error": "PRECONDITION_FAILED",
            "message": "Select a character first",
            "details": {"step": 1},
        }

    def test_default_message_by_code(self):
        error = NotFoundError("product", "p1")

        assert error.get_user_friendly_message() == "Product not found."
        assert error.details == {"entity": "product", "id": "p1"}

    def test_upstream_failure_records_kind(self):
        error = UpstreamGenerationFailure("text", "quota", {"model": "gemini"})

        assert error.code == ErrorCode.TEXT_GENERATION_FAILED
        assert error.details == {"model": "gemini", "kind": "text"}

    def test_download_failure_code(self):
        assert MediaProcessingFailure("reset", download=True).code == ErrorCode.ASSET_DOWNLOAD_FAILED

    def test_str(self):
        assert str(PipelineError(ErrorCode.NO_SCENES, "nothing included")) == "NO_SCENES: nothing included"


class TestRetry:

    def test_transient_classification(self):
        assert should_retry(MediaProcessingFailure("reset", download=True))
        assert should_retry(StoreUnavailable("down"))
        assert should_retry(ConnectionError())
        assert not should_retry(ValidationError("bad"))
        assert not should_retry(GenerationTimeout())
        assert not should_retry(ValueError())

    def test_backoff(self):
        assert get_retry_delay(0) == 2.0
        assert get_retry_delay(2) == 8.0
        assert get_retry_delay(10) == 60.0
        assert get_retry_delay(3, max_delay=10.0) == 10.0


class TestCodeTable:

    def test_every_code_has_status_and_message(self):
        assert set(_CODE_TABLE) == set(ErrorCode)
        for status, message in _CODE_TABLE.values():
            assert 400 <= status < 600
            assert message

    def test_storage_failures_share_one_code(self):
        assert [code for code in ErrorCode if code.value.startswith("STORAGE")] == []
        assert StoreUnavailable("down").code == ErrorCode.STORE_UNAVAILABLE
