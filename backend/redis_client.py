"""
Redis mirror for usage counters, so stats survive restarts
"""

import json
import structlog
from typing import Any, Dict, List, Optional
from redis import Redis, ConnectionPool
from redis.exceptions import ConnectionError
from config import settings

logger = structlog.get_logger().bind(service="redis")

USAGE_COUNTS_KEY = "usage:counts"
USAGE_HISTORY_KEY = "usage:history"


class RedisClient:
    """Pooled Redis connection plus the usage counter keys"""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self._client: Optional[Redis] = None
        self._connect()

    def _connect(self) -> None:
        pool = ConnectionPool.from_url(
            self.url,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_CONNECT_TIMEOUT,
            retry_on_timeout=settings.REDIS_RETRY_ON_TIMEOUT,
            health_check_interval=settings.REDIS_HEALTH_CHECK_INTERVAL,
            decode_responses=True
        )
        client = Redis(connection_pool=pool)
        try:
            client.ping()
        except ConnectionError as e:
            logger.error("redis_connection_failed", url=self.url, error=str(e))
            raise
        self._client = client
        logger.info("redis_connected", url=self.url)

    @property
    def client(self) -> Redis:
        if self._client is None:
            self._connect()
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("redis_connection_closed")

    def increment_usage(self, generation_type: str) -> None:
        self.client.hincrby(USAGE_COUNTS_KEY, generation_type, 1)

    def push_usage_record(self, record: Dict[str, Any], limit: int) -> None:
        """Prepend a history entry and trim the list to `limit` entries."""
        pipe = self.client.pipeline()
        pipe.lpush(USAGE_HISTORY_KEY, json.dumps(record))
        pipe.ltrim(USAGE_HISTORY_KEY, 0, limit - 1)
        pipe.execute()

    def load_usage(self, limit: int) -> Dict[str, Any]:
        """Return {"counts": {...}, "history": [...]} as stored, newest entry first."""
        counts = {key: int(value) for key, value in self.client.hgetall(USAGE_COUNTS_KEY).items()}
        history: List[Dict[str, Any]] = [
            json.loads(raw) for raw in self.client.lrange(USAGE_HISTORY_KEY, 0, limit - 1)
        ]
        return {"counts": counts, "history": history}

    def clear_usage(self) -> None:
        self.client.delete(USAGE_COUNTS_KEY, USAGE_HISTORY_KEY)
