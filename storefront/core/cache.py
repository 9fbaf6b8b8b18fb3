"""Cache service with Redis (production) or in-memory (development) backend.

Values are JSON-serialised in both backends so callers always receive a
fresh copy, never a shared reference to what another caller stored.
"""

import fnmatch
import json
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

try:
    import redis.asyncio as redis
    REDIS_AVAILABLE = True
except ImportError:
    redis = None
    REDIS_AVAILABLE = False

from storefront.core.config import Settings
from storefront.core.logging import get_logger, log_cache_operation

logger = get_logger(__name__)

CacheEntries = Iterable[Tuple[str, Any]]


class CacheService:
    """Async key-value cache with Redis or memory backend.

    Backend selection:
    - Redis: When REDIS_ENABLED=true, a REDIS_URL is set and the server answers PING
    - Memory: Otherwise (single-process development and tests)
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.default_ttl = settings.cache_ttl
        self.redis: Optional["redis.Redis"] = None
        # key -> (serialized value, expires_at unix timestamp)
        self.memory_cache: Dict[str, Tuple[str, float]] = {}
        self.use_redis = settings.redis_enabled and REDIS_AVAILABLE
        self.log = logger

    async def startup(self):
        """Initialize cache connection."""
        if self.use_redis and self.settings.redis_url:
            try:
                self.redis = redis.from_url(
                    self.settings.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_timeout=5,
                    socket_connect_timeout=5,
                    retry_on_timeout=True
                )
                await self.redis.ping()
                logger.info("Redis cache initialized", url=self.settings.redis_url)

            except Exception as e:
                logger.warning("Redis connection failed, falling back to memory", error=str(e))
                self.use_redis = False
                self.redis = None
        else:
            self.use_redis = False
            logger.info("Using in-memory cache",
                        redis_enabled=self.settings.redis_enabled,
                        redis_available=REDIS_AVAILABLE)

        self.log = logger.bind(cache_backend=self.backend)

    async def shutdown(self):
        """Close cache connections."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            logger.info("Redis cache connections closed")

        self.memory_cache.clear()

    def is_redis_available(self) -> bool:
        """Check if Redis is available and connected."""
        return self.use_redis and self.redis is not None

    @property
    def backend(self) -> str:
        return "redis" if self.is_redis_available() else "memory"

    # ============================================================================
    # Memory backend helpers
    # ============================================================================

    def _memory_get(self, key: str) -> Optional[str]:
        entry = self.memory_cache.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= time.time():
            del self.memory_cache[key]
            return None
        return value

    def _memory_set(self, key: str, serialized: str, ttl: int) -> None:
        self.memory_cache[key] = (serialized, time.time() + ttl)

    def _memory_ttl(self, key: str) -> int:
        """Remaining TTL in whole seconds, -2 when the key is missing (as Redis TTL)."""
        if self._memory_get(key) is None:
            return -2
        expires_at = self.memory_cache[key][1]
        return max(int(expires_at - time.time()), 0)

    # ============================================================================
    # Single-key operations
    # ============================================================================

    async def get(self, key: str, refresh: Optional[bool] = None,
                  ttl: Optional[int] = None) -> Optional[Any]:
        """Get value from cache.

        A hit slides the key's expiry back to ``ttl`` (default TTL when None)
        unless ``refresh`` is False (defaults to CACHE_REFRESH_ON_READ).
        """
        if refresh is None:
            refresh = self.settings.cache_refresh_on_read
        try:
            if self.is_redis_available():
                value = await self.redis.get(key)
            else:
                value = self._memory_get(key)

            if value is None:
                log_cache_operation(self.log, "get", key, hit=False)
                return None

            log_cache_operation(self.log, "get", key, hit=True)
            if refresh:
                await self.refresh(key, ttl)
            return json.loads(value)

        except Exception as e:
            logger.error("Cache get failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache with optional TTL (seconds)."""
        try:
            ttl = ttl or self.default_ttl
            serialized = json.dumps(value, default=str)

            if self.is_redis_available():
                await self.redis.setex(key, ttl, serialized)
            else:
                self._memory_set(key, serialized, ttl)
            log_cache_operation(self.log, "set", key, ttl=ttl)
            return True

        except Exception as e:
            logger.error("Cache set failed", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        """Delete value from cache."""
        try:
            if self.is_redis_available():
                deleted = bool(await self.redis.delete(key))
            else:
                deleted = self.memory_cache.pop(key, None) is not None
            log_cache_operation(self.log, "delete", key, deleted=deleted)
            return deleted

        except Exception as e:
            logger.error("Cache delete failed", key=key, error=str(e))
            return False

    async def exists(self, key: str) -> bool:
        """Check if key exists in cache."""
        try:
            if self.is_redis_available():
                return bool(await self.redis.exists(key))
            return self._memory_get(key) is not None

        except Exception as e:
            logger.error("Cache exists check failed", key=key, error=str(e))
            return False

    async def refresh(self, key: str, ttl: Optional[int] = None) -> bool:
        """Reset the TTL of a key that still has a positive TTL."""
        ttl = ttl or self.default_ttl
        try:
            if self.is_redis_available():
                if await self.redis.ttl(key) > 0:
                    return bool(await self.redis.expire(key, ttl))
                return False

            if self._memory_ttl(key) > 0:
                value = self.memory_cache[key][0]
                self._memory_set(key, value, ttl)
                return True
            return False

        except Exception as e:
            logger.error("Cache refresh failed", key=key, error=str(e))
            return False

    # ============================================================================
    # Batched operations
    # ============================================================================

    async def pipeline(self, entries: CacheEntries, ttl: Optional[int] = None) -> bool:
        """Write several (key, value) pairs in a single round trip."""
        entries = list(entries)
        if not entries:
            return True
        try:
            ttl = ttl or self.default_ttl
            serialized = [(key, json.dumps(value, default=str)) for key, value in entries]

            if self.is_redis_available():
                async with self.redis.pipeline(transaction=False) as pipe:
                    for key, value in serialized:
                        pipe.setex(key, ttl, value)
                    await pipe.execute()
            else:
                for key, value in serialized:
                    self._memory_set(key, value, ttl)

            log_cache_operation(self.log, "pipeline", [k for k, _ in serialized], ttl=ttl)
            return True

        except Exception as e:
            logger.error("Cache pipeline failed", keys=[k for k, _ in entries], error=str(e))
            return False

    async def pipeline_delete(self, keys: Iterable[str]) -> int:
        """Delete several keys in a single round trip. Returns count deleted."""
        keys = list(dict.fromkeys(keys))
        if not keys:
            return 0
        try:
            if self.is_redis_available():
                async with self.redis.pipeline(transaction=False) as pipe:
                    for key in keys:
                        pipe.delete(key)
                    results = await pipe.execute()
                deleted = sum(int(r) for r in results)
            else:
                deleted = sum(1 for key in keys if self.memory_cache.pop(key, None) is not None)

            log_cache_operation(self.log, "pipeline_delete", keys, deleted=deleted)
            return deleted

        except Exception as e:
            logger.error("Cache pipeline delete failed", keys=keys, error=str(e))
            return 0

    async def clear_pattern(self, pattern: str) -> int:
        """Clear keys matching a glob pattern."""
        try:
            if self.is_redis_available():
                keys: List[str] = [key async for key in self.redis.scan_iter(match=pattern)]
                deleted = await self.redis.delete(*keys) if keys else 0
            else:
                keys = [k for k in self.memory_cache if fnmatch.fnmatchcase(k, pattern)]
                for key in keys:
                    del self.memory_cache[key]
                deleted = len(keys)

            log_cache_operation(self.log, "clear_pattern", pattern, deleted=deleted)
            return deleted

        except Exception as e:
            logger.error("Cache clear pattern failed", pattern=pattern, error=str(e))
            return 0

    async def flush_all(self) -> bool:
        """Drop every key in the cache."""
        try:
            if self.is_redis_available():
                await self.redis.flushdb()
            else:
                self.memory_cache.clear()
            logger.info("Cache flushed", backend=self.backend)
            return True

        except Exception as e:
            logger.error("Cache flush failed", error=str(e))
            return False
