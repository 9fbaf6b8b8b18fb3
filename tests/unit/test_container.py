"""Unit tests for dependency wiring."""

import pytest
import structlog
from dependency_injector import providers

from storefront.core.container import Container, shutdown, startup
from storefront.repositories import SessionRepository, UserRepository


@pytest.fixture
def container(settings):
    container = Container()
    container.settings.override(providers.Object(settings))
    yield container
    container.settings.reset_override()
    structlog.reset_defaults()


class TestContainer:
    """Test suite for Container."""

    def test_repositories_share_stores(self, container):
        users = container.user_repository()
        sessions = container.session_repository()

        assert isinstance(users, UserRepository)
        assert isinstance(sessions, SessionRepository)
        assert users.database is sessions.database is container.database()
        assert users.cache is sessions.cache is container.cache()
        assert sessions.users.database is users.database

    def test_repository_ttls_come_from_settings(self, container, settings):
        assert container.user_repository().cache_ttl == settings.user_cache_ttl
        assert container.session_repository().cache_ttl == settings.session_cache_ttl

    @pytest.mark.asyncio
    async def test_startup_and_shutdown(self, container):
        await startup(container)
        try:
            users = container.user_repository()
            user = await users.create_user({"email": "ada@example.com"}, raise_errors=True)
            assert (await users.find_user_by_id(user.id)).email == "ada@example.com"
            assert structlog.contextvars.get_contextvars() == {
                "cache_backend": "memory",
                "database": "sqlite",
            }
        finally:
            await shutdown(container)

        assert container.database().engine is None
        assert structlog.contextvars.get_contextvars() == {}
