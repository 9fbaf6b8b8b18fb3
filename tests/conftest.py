"""Shared fixtures: in-memory SQLite store and memory cache."""

import pytest
import pytest_asyncio

from storefront.core.cache import CacheService
from storefront.core.config import Settings
from storefront.core.database import Database
from storefront.repositories import SessionRepository, UserRepository


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        redis_enabled=False,
        db_max_retries=3,
        db_retry_base_delay=0.0,
    )


@pytest_asyncio.fixture
async def database(settings):
    db = Database(settings)
    await db.startup()
    yield db
    await db.shutdown()


@pytest_asyncio.fixture
async def cache(settings):
    service = CacheService(settings)
    await service.startup()
    yield service
    await service.shutdown()


@pytest.fixture
def user_repository(database, cache, settings):
    return UserRepository(database, cache, settings)


@pytest.fixture
def session_repository(database, cache, settings, user_repository):
    return SessionRepository(database, cache, settings, users=user_repository)


@pytest.fixture
def user_factory(user_repository):
    """Factory creating persisted users (no password hashing, keeps tests fast)."""

    async def _factory(
        email: str = "ada@example.com",
        username: str | None = "ada",
        is_verified: bool = True,
        **fields,
    ):
        return await user_repository.create_user(
            {"email": email, "username": username, "is_verified": is_verified, **fields},
            raise_errors=True,
        )

    return _factory
