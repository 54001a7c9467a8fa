import json
import logging
from typing import Any, Optional

import redis
import redis.asyncio as aioredis

from examproctor.core.config import settings

logger = logging.getLogger(__name__)


class CacheManager:
    """Redis access shared by the API, the realtime fan-out and Celery tasks.

    Every operation degrades to a falsy result when Redis is unreachable so
    that cache trouble never fails a request.
    """

    def __init__(self, redis_url: Optional[str] = None, default_ttl: Optional[int] = None):
        self.redis_url = redis_url or settings.redis_url
        self.default_ttl = default_ttl or settings.cache_default_ttl

        self._sync_client = None
        self._async_client = None

    @property
    def sync_client(self) -> redis.Redis:
        if self._sync_client is None:
            self._sync_client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True
            )
        return self._sync_client

    async def get_async_client(self) -> aioredis.Redis:
        if self._async_client is None:
            try:
                self._async_client = aioredis.from_url(
                    self.redis_url,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                    health_check_interval=30
                )
                await self._async_client.ping()
            except Exception as e:
                logger.warning(f"Failed to create async Redis client: {e}")
                self._async_client = None
                raise
        return self._async_client

    def _serialize_value(self, value: Any) -> str:
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cache serialization error: {e}")
            return json.dumps(str(value))

    def _deserialize_value(self, value: Optional[str]) -> Any:
        if value is None:
            return None
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Cache deserialization error: {e}")
            return value

    def _drop_async_client_on(self, error: Exception):
        if "connection" in str(error).lower() or "timeout" in str(error).lower():
            self._async_client = None

    def get(self, key: str) -> Optional[Any]:
        try:
            value = self.sync_client.get(key)
            return self._deserialize_value(value) if value else None
        except Exception as e:
            logger.warning(f"Cache get error for key '{key}': {e}")
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        try:
            return bool(self.sync_client.setex(key, ttl or self.default_ttl, self._serialize_value(value)))
        except Exception as e:
            logger.warning(f"Cache set error for key '{key}': {e}")
            return False

    async def aget(self, key: str) -> Optional[Any]:
        try:
            client = await self.get_async_client()
            value = await client.get(key)
            return self._deserialize_value(value) if value else None
        except Exception as e:
            logger.warning(f"Async cache get error for key '{key}': {e}")
            self._drop_async_client_on(e)
            return None

    async def aset(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        try:
            client = await self.get_async_client()
            result = await client.setex(key, ttl or self.default_ttl, self._serialize_value(value))
            return bool(result)
        except Exception as e:
            logger.warning(f"Async cache set error for key '{key}': {e}")
            self._drop_async_client_on(e)
            return False

    async def apublish(self, channel: str, message: Any) -> int:
        """Publish a JSON message on a pub/sub channel, returning the receiver count."""
        try:
            client = await self.get_async_client()
            return int(await client.publish(channel, self._serialize_value(message)))
        except Exception as e:
            logger.warning(f"Cache publish error on '{channel}': {e}")
            self._drop_async_client_on(e)
            return 0

    def health_check(self) -> bool:
        try:
            return bool(self.sync_client.ping())
        except Exception:
            return False

    async def ahealth_check(self) -> bool:
        try:
            client = await self.get_async_client()
            return bool(await client.ping())
        except Exception as e:
            logger.warning(f"Cache health check failed: {e}")
            return False

    async def aclose(self):
        if self._async_client is not None:
            await self._async_client.aclose()
            self._async_client = None
        if self._sync_client is not None:
            self._sync_client.close()
            self._sync_client = None


cache = CacheManager()
