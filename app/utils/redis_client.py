import json
from typing import Optional

import redis.asyncio as redis

from app.core.config import settings
from app.core.logging import logger


class RedisClient:
    """
    Process-wide cache client. Every failure degrades to a cache miss.
    """
    _instance = None
    _redis = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(RedisClient, cls).__new__(cls)
        return cls._instance

    async def connect(self):
        if self._redis is None:
            if not settings.REDIS_URL:
                return None
            try:
                self._redis = redis.from_url(
                    settings.REDIS_URL,
                    encoding="utf-8",
                    decode_responses=True
                )
                await self._redis.ping()
                logger.info("Successfully connected to Redis")
            except Exception as e:
                logger.error(f"Failed to connect to Redis: {e}")
                self._redis = None
        return self._redis

    async def get_client(self) -> Optional[redis.Redis]:
        if self._redis is None:
            await self.connect()
        return self._redis

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis connection closed")

    async def set_cache(self, key: str, value: dict, ttl: int = 300):
        client = await self.get_client()
        if client:
            try:
                await client.set(key, json.dumps(value, default=str), ex=ttl)
            except Exception as e:
                logger.error(f"Error setting Redis cache for key {key}: {e}")

    async def get_cache(self, key: str) -> Optional[dict]:
        client = await self.get_client()
        if client:
            try:
                data = await client.get(key)
                if data:
                    return json.loads(data)
            except Exception as e:
                logger.error(f"Error getting Redis cache for key {key}: {e}")
        return None

    async def delete(self, *keys: str):
        client = await self.get_client()
        if client and keys:
            try:
                await client.delete(*keys)
            except Exception as e:
                logger.error(f"Error deleting Redis keys {keys}: {e}")

    async def delete_by_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching the given pattern. Returns the number removed.
        """
        deleted = 0
        client = await self.get_client()
        if client:
            try:
                # SCAN instead of KEYS to avoid blocking the server
                cursor = 0
                while True:
                    cursor, keys = await client.scan(cursor=cursor, match=pattern, count=100)
                    if keys:
                        deleted += await client.delete(*keys)
                    if cursor == 0:
                        break
            except Exception as e:
                logger.error(f"Error deleting Redis keys with pattern {pattern}: {e}")
        return deleted


redis_client = RedisClient()
