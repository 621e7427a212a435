"""
Counts every generative call for observability.

Counters live in memory and are mirrored to Redis when a client is given.
The first Redis failure turns mirroring off for the rest of the process.
"""

import time
from collections import deque
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

import structlog
from redis.exceptions import RedisError

from config import settings

logger = structlog.get_logger()

PROMPT_PREVIEW_LENGTH = 100


class GenerationType(str, Enum):
    TEXT_TO_TEXT = "text-to-text"
    TEXT_TO_IMAGE = "text-to-image"
    TEXT_TO_VIDEO = "text-to-video"


def prompt_preview(prompt: str) -> str:
    if len(prompt) <= PROMPT_PREVIEW_LENGTH:
        return prompt
    return prompt[:PROMPT_PREVIEW_LENGTH] + "..."


class UsageCounter:
    """In-process usage statistics with optional Redis persistence."""

    def __init__(self, history_limit: Optional[int] = None, redis_client=None):
        self.history_limit = history_limit or settings.USAGE_HISTORY_LIMIT
        self._redis = redis_client
        self._counts: Dict[str, int] = {t.value: 0 for t in GenerationType}
        self._history: Deque[Dict[str, Any]] = deque(maxlen=self.history_limit)

    @property
    def persistent(self) -> bool:
        return self._redis is not None

    def _disable_persistence(self, operation: str, error: Exception) -> None:
        logger.warning("usage_counter_redis_disabled", operation=operation, error=str(error))
        self._redis = None

    def load(self) -> None:
        """Restore counters from Redis, if configured."""
        if self._redis is None:
            return
        try:
            stored = self._redis.load_usage(self.history_limit)
        except RedisError as e:
            self._disable_persistence("load", e)
            return
        for key, value in stored["counts"].items():
            if key in self._counts:
                self._counts[key] = value
        self._history.clear()
        # Both Redis and the deque keep newest first
        self._history.extend(stored["history"])
        logger.info("usage_counter_loaded", total=sum(self._counts.values()))

    def record(
        self,
        generation_type: GenerationType,
        model: str,
        prompt: str,
        success: bool,
        response_time_ms: Optional[float] = None,
    ) -> Dict[str, Any]:
        entry = {
            "type": generation_type.value,
            "model": model,
            "timestamp": time.time(),
            "success": success,
            "promptPreview": prompt_preview(prompt),
            "responseTimeMs": round(response_time_ms) if response_time_ms is not None else None,
        }
        self._counts[generation_type.value] += 1
        self._history.appendleft(entry)

        if self._redis is not None:
            try:
                self._redis.increment_usage(generation_type.value)
                self._redis.push_usage_record(entry, self.history_limit)
            except RedisError as e:
                self._disable_persistence("record", e)

        logger.info(
            "generation_recorded",
            generation_type=generation_type.value,
            model=model,
            success=success,
            response_time_ms=entry["responseTimeMs"]
        )
        return entry

    def stats(self) -> Dict[str, Any]:
        return {
            "textToText": self._counts[GenerationType.TEXT_TO_TEXT.value],
            "textToImage": self._counts[GenerationType.TEXT_TO_IMAGE.value],
            "textToVideo": self._counts[GenerationType.TEXT_TO_VIDEO.value],
            "total": sum(self._counts.values()),
            "history": list(self._history),
        }

    def breakdown(self) -> List[Dict[str, Any]]:
        total = sum(self._counts.values())
        return [
            {
                "type": t.value,
                "count": self._counts[t.value],
                "percentage": round(self._counts[t.value] / total * 100, 1) if total else 0,
            }
            for t in GenerationType
        ]

    def success_rate(self) -> Dict[str, Any]:
        successful = sum(1 for entry in self._history if entry["success"])
        failed = len(self._history) - successful
        rate = round(successful / len(self._history) * 100, 1) if self._history else 100
        return {"successful": successful, "failed": failed, "rate": rate}

    def average_response_time(self) -> float:
        times = [entry["responseTimeMs"] for entry in self._history if entry.get("responseTimeMs") is not None]
        if not times:
            return 0
        return round(sum(times) / len(times))

    def history(self, limit: int = 50) -> List[Dict[str, Any]]:
        return list(self._history)[:limit]

    def reset(self) -> None:
        self._counts = {t.value: 0 for t in GenerationType}
        self._history.clear()
        if self._redis is not None:
            try:
                self._redis.clear_usage()
            except RedisError as e:
                self._disable_persistence("reset", e)
        logger.info("usage_counter_reset")
