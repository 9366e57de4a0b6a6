# users/services/redis_service.py
"""
Redis client used by the Redis rate-limit backend.
Uses FakeRedis when USE_FAKE_REDIS=True (tests, no server needed).
"""

import logging
from typing import Optional

from django.conf import settings

logger = logging.getLogger("users.security")


class RedisService:
    """
    Lazily connected, process-wide Redis client.
    """

    _instance: Optional["RedisService"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._client = None
        return cls._instance

    def _initialize(self):
        """Initialize Redis connection."""
        if getattr(settings, "USE_FAKE_REDIS", False):
            import fakeredis
            self._client = fakeredis.FakeRedis(decode_responses=True)
        else:
            import redis
            self._client = redis.Redis(
                host=getattr(settings, "REDIS_HOST", "localhost"),
                port=getattr(settings, "REDIS_PORT", 6379),
                db=getattr(settings, "REDIS_DB", 0),
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5,
                retry_on_timeout=True,
            )

    @property
    def client(self):
        """Get Redis client instance."""
        if self._client is None:
            self._initialize()
        return self._client

    def reset(self):
        """Drop the cached client (settings changed, or between tests)."""
        self._client = None

    def ping(self) -> bool:
        import redis

        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False


# Singleton instance
redis_service = RedisService()
