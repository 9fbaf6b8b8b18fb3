"""Dependency injection container for the data layer."""

from dependency_injector import containers, providers

from storefront.core.config import Settings
from storefront.core.database import Database
from storefront.core.cache import CacheService
from storefront.core.health import set_startup_time
from storefront.core.logging import (
    bind_store_context,
    clear_store_context,
    configure_logging,
    get_logger,
)
from storefront.repositories.sessions import SessionRepository
from storefront.repositories.users import UserRepository

logger = get_logger(__name__)


class Container(containers.DeclarativeContainer):
    """Data layer dependency injection container."""

    settings = providers.Singleton(
        Settings,
    )

    database = providers.Singleton(
        Database,
        settings=settings
    )

    cache = providers.Singleton(
        CacheService,
        settings=settings
    )

    # Repositories
    user_repository = providers.Factory(
        UserRepository,
        database=database,
        cache=cache,
        settings=settings
    )

    session_repository = providers.Factory(
        SessionRepository,
        database=database,
        cache=cache,
        settings=settings,
        users=user_repository
    )


async def startup(container: Container) -> None:
    """Configure logging and open the database and cache connections."""
    configure_logging(container.settings())
    await container.database().startup()
    await container.cache().startup()
    set_startup_time()
    bind_store_context(
        cache_backend=container.cache().backend,
        database=container.database().engine.dialect.name,
    )
    logger.info("Storefront data layer started")


async def shutdown(container: Container) -> None:
    """Close the cache and database connections."""
    await container.cache().shutdown()
    await container.database().shutdown()
    logger.info("Storefront data layer stopped")
    clear_store_context()


# Global container instance
container = Container()
