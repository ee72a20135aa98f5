import logging
from typing import Optional

import redis

from app.core.config import CacheSettings
from app.core.constants import PRODUCT_CACHE_PREFIX

logger = logging.getLogger(__name__)


def product_cache_key(product_id: int) -> str:
    return f"{PRODUCT_CACHE_PREFIX}{product_id}"


class Cache:
    """Thin Redis wrapper storing pre-serialized JSON strings.

    Redis failures never propagate: reads degrade to a miss and writes are
    logged and reported through the boolean return value.
    """

    def __init__(self, client: Optional[redis.Redis], ttl_seconds: int):
        self._client = client
        self._ttl = ttl_seconds

    @classmethod
    def from_settings(cls, settings: CacheSettings) -> "Cache":
        try:
            client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_timeout=settings.redis_socket_timeout,
                socket_connect_timeout=settings.redis_socket_connect_timeout,
                retry_on_timeout=settings.redis_retry_on_timeout,
            )
            logger.info(f"Redis cache initialized with URL: {settings.redis_url}")
        except redis.RedisError as e:
            logger.warning(f"Failed to initialize Redis cache: {str(e)}. Caching will be disabled.")
            client = None
        return cls(client, settings.ttl_seconds)

    @property
    def ttl(self) -> int:
        return self._ttl

    @property
    def enabled(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    def get(self, key: str) -> Optional[str]:
        if self._client is None:
            return None

        try:
            val = self._client.get(key)
        except redis.RedisError as e:
            logger.error(f"Error retrieving {key} from cache: {str(e)}")
            return None
        if val is None:
            logger.debug(f"Cache miss for key: {key}")
            return None
        logger.debug(f"Cache hit for key: {key}")
        return val

    def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        if self._client is None:
            return False

        try:
            self._client.set(key, value, ex=ttl or self._ttl)
            logger.debug(f"Set cache for key: {key}, TTL: {ttl or self._ttl}s")
            return True
        except redis.RedisError as e:
            logger.error(f"Error setting cache for {key}: {str(e)}")
            return False

    def touch(self, key: str, ttl: int | None = None) -> bool:
        """Reset the expiry of an existing key (sliding TTL)."""
        if self._client is None:
            return False

        try:
            return bool(self._client.expire(key, ttl or self._ttl))
        except redis.RedisError as e:
            logger.error(f"Error resetting TTL for {key}: {str(e)}")
            return False

    def delete(self, key: str) -> bool:
        if self._client is None:
            return False

        try:
            self._client.delete(key)
            logger.debug(f"Invalidated cache key: {key}")
            return True
        except redis.RedisError as e:
            logger.error(f"Error invalidating cache key {key}: {str(e)}")
            return False

    def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
