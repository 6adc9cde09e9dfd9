"""
Redis caching layer for the Products Service.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff

from shared.config import ServiceConfig
from shared.logging import get_logger


class CacheStatus(str, Enum):
    """Outcome of a cache read."""
    HIT = "hit"
    MISS = "miss"
    ERROR = "error"


@dataclass(frozen=True)
class CacheLookup:
    """Result of a cache read. ``payload`` is only set on a hit."""
    status: CacheStatus
    payload: Optional[str] = None

    @property
    def hit(self) -> bool:
        return self.status is CacheStatus.HIT


class ProductCache:
    """Best-effort Redis cache for product payloads.

    No method raises: an unreachable or slow Redis shows up as
    ``CacheStatus.ERROR`` on reads and ``False`` on writes.
    """

    def __init__(self, config: ServiceConfig, client: Optional[redis.Redis] = None):
        self.config = config
        self.logger = get_logger("products.cache.redis")
        self.redis: Optional[redis.Redis] = client

    async def start(self) -> bool:
        """Create the client and test the connection.

        A failed ping is only a warning; the client stays in place and
        reconnects on the next command.
        """
        if self.redis is None:
            self.redis = self._create_client()

        if await self.ping():
            self.logger.info("Redis cache started", host=self.config.redis_host, port=self.config.redis_port)
            return True

        self.logger.warning(
            "Redis connection failed, serving from store only",
            host=self.config.redis_host,
            port=self.config.redis_port,
        )
        return False

    def _create_client(self) -> redis.Redis:
        return redis.Redis(
            host=self.config.redis_host,
            port=self.config.redis_port,
            db=self.config.redis_db,
            password=None,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=self.config.redis_socket_timeout,
            socket_timeout=self.config.redis_socket_timeout,
            health_check_interval=30,
            # a down cache must fail fast, never retry
            retry=Retry(NoBackoff(), 0),
        )

    async def stop(self):
        """Close the Redis client."""
        if self.redis:
            try:
                await self.redis.aclose()
            except Exception as e:
                self.logger.warning("Error closing Redis cache", error=str(e))
            self.redis = None
            self.logger.info("Redis cache stopped")

    async def get(self, key: str) -> CacheLookup:
        if self.redis is None:
            return CacheLookup(CacheStatus.ERROR)
        try:
            payload = await self.redis.get(key)
        except Exception as e:
            self.logger.warning("Cache get failed", key=key, error=str(e))
            return CacheLookup(CacheStatus.ERROR)

        if payload is None:
            return CacheLookup(CacheStatus.MISS)
        return CacheLookup(CacheStatus.HIT, payload)

    async def set(self, key: str, payload: str, ttl_seconds: int) -> bool:
        if self.redis is None:
            return False
        try:
            await self.redis.setex(key, ttl_seconds, payload)
            self.logger.debug("Cached entry", key=key, ttl=ttl_seconds)
            return True
        except Exception as e:
            self.logger.warning("Cache set failed", key=key, error=str(e))
            return False

    async def delete(self, *keys: str) -> bool:
        """Invalidate entries."""
        if self.redis is None or not keys:
            return False
        try:
            await self.redis.delete(*keys)
            return True
        except Exception as e:
            self.logger.warning("Cache invalidation failed", keys=list(keys), error=str(e))
            return False

    async def ping(self) -> bool:
        """Check Redis health."""
        if self.redis is None:
            return False
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False
