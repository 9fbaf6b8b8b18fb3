"""Cache-aside repositories.

Usage:
    from storefront.repositories import UserRepository

    users = UserRepository(database, cache, settings)
    user = await users.find_user_by_email("ada@example.com")
"""

from storefront.repositories.base import CacheAsideRepository
from storefront.repositories.errors import (
    ErrorKind,
    PermanentStoreError,
    RecordNotFoundError,
    RepositoryError,
    TransientStoreError,
)
from storefront.repositories.keys import EntityKeys, collection_key
from storefront.repositories.sessions import SessionRepository
from storefront.repositories.users import UserRepository

__all__ = [
    "CacheAsideRepository",
    "UserRepository",
    "SessionRepository",
    "EntityKeys",
    "collection_key",
    "ErrorKind",
    "RepositoryError",
    "RecordNotFoundError",
    "TransientStoreError",
    "PermanentStoreError",
]
