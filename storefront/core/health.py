"""Health checks for the relational store and the cache."""

import time
from typing import Any, Dict, TYPE_CHECKING

from sqlalchemy import text

if TYPE_CHECKING:
    from storefront.core.config import Settings
    from storefront.core.database import Database
    from storefront.core.cache import CacheService

# Module-level startup time tracking
_startup_time: float = 0.0


def set_startup_time() -> None:
    """Record the startup time. Call once after the stores are up."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    """Get uptime in seconds since startup."""
    return time.time() - _startup_time if _startup_time else 0.0


async def check_database(database: "Database") -> bool:
    """Check database connectivity."""
    try:
        async with database.get_session() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


async def check_cache(cache: "CacheService") -> bool:
    """Check cache connectivity with a set/get/delete round trip."""
    test_key = "_health_check"
    if not await cache.set(test_key, "ok", ttl=10):
        return False
    result = await cache.get(test_key, refresh=False)
    await cache.delete(test_key)
    return result == "ok"


async def get_health_status(
    database: "Database",
    cache: "CacheService",
    settings: "Settings"
) -> Dict[str, Any]:
    """Summarise dependency health.

    Returns:
        Dict with overall status, uptime, per-dependency checks and the
        cache backend actually in use.
    """
    db_healthy = await check_database(database)
    cache_healthy = await check_cache(cache)

    return {
        "status": "healthy" if (db_healthy and cache_healthy) else "degraded",
        "uptime_seconds": round(get_uptime(), 1),
        "checks": {
            "database": db_healthy,
            "cache": cache_healthy,
        },
        "cache_backend": cache.backend,
        "features": {
            "redis": settings.redis_enabled,
            "cache_refresh_on_read": settings.cache_refresh_on_read,
        },
    }
