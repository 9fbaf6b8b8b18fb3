"""User repository."""

from typing import Any, Mapping, Optional, Union

from storefront.models import User
from storefront.repositories.base import CacheAsideRepository
from storefront.repositories.errors import RecordNotFoundError


class UserRepository(CacheAsideRepository[User]):
    """Users cached under ``user:id:*``, ``user:email:*`` and ``user:username:*``."""

    model = User
    entity = "user"
    unique_fields = ("id", "email", "username")

    def __init__(self, database, cache, settings, logger=None, **options):
        options.setdefault("cache_ttl", settings.user_cache_ttl)
        super().__init__(database, cache, settings, logger=logger, **options)

    async def create_user(self, data: Union[User, Mapping[str, Any]],
                          raise_errors: bool = False) -> Optional[User]:
        return await self.create(data, raise_errors=raise_errors)

    async def find_user_by_id(self, user_id: str, raise_errors: bool = False) -> Optional[User]:
        return await self.find_by("id", user_id, raise_errors=raise_errors)

    async def find_user_by_email(self, email: str, raise_errors: bool = False) -> Optional[User]:
        return await self.find_by("email", email, raise_errors=raise_errors)

    async def find_user_by_username(self, username: str, check_verified: bool = True,
                                    raise_errors: bool = False) -> Optional[User]:
        """Find a user by username; unverified accounts are hidden unless ``check_verified`` is False."""
        user = await self.find_by("username", username, raise_errors=raise_errors)
        if user is not None and check_verified and not user.is_verified:
            if raise_errors:
                raise RecordNotFoundError(f"No verified user named {username}", entity=self.entity)
            return None
        return user

    async def find_user_by_verification_hash(self, verification_hash: str,
                                             raise_errors: bool = False) -> Optional[User]:
        """Uncached lookup; verification hashes are single-use."""
        try:
            user = await self._find_one(User.verification_hash == verification_hash)
        except Exception as e:
            return self._fail(e, None, "Error finding user by verification hash", raise_errors)

        if user is None and raise_errors:
            raise RecordNotFoundError("No user with this verification hash", entity=self.entity)
        return user

    async def update_user(self, user_id: str, data: Union[User, Mapping[str, Any]],
                          raise_errors: bool = False) -> Optional[User]:
        return await self.update(user_id, data, raise_errors=raise_errors)

    async def delete_user(self, user_id: str, raise_errors: bool = False) -> bool:
        return await self.delete(user_id, raise_errors=raise_errors)
