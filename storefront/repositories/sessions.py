"""Session repository.

Besides the per-record keys (``session:id:*``, ``session:token:*``) a user's
sessions are cached as one list under ``sessions:user:<user_id>``. The list
is never patched in place: any write to one of the user's sessions drops it
and the next read rebuilds it from the database.
"""

from datetime import datetime, timezone
from typing import List, Optional

from storefront.models import UserSession
from storefront.repositories.base import CacheAsideRepository
from storefront.repositories.keys import collection_key
from storefront.repositories.users import UserRepository


class SessionRepository(CacheAsideRepository[UserSession]):

    model = UserSession
    entity = "session"
    unique_fields = ("id", "token")

    def __init__(self, database, cache, settings, logger=None,
                 users: Optional[UserRepository] = None, **options):
        options.setdefault("cache_ttl", settings.session_cache_ttl)
        super().__init__(database, cache, settings, logger=logger, **options)
        self.users = users or UserRepository(database, cache, settings)

    @staticmethod
    def user_sessions_key(user_id: str) -> str:
        return collection_key("sessions", "user", user_id)

    def related_keys(self, record: UserSession) -> List[str]:
        return [self.user_sessions_key(record.user_id)]

    async def create_session(
        self,
        user_id: str,
        token: str,
        expires_at: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        raise_errors: bool = False,
    ) -> Optional[UserSession]:
        return await self.create(
            {
                "user_id": user_id,
                "token": token,
                "expires_at": expires_at,
                "ip_address": ip_address,
                "user_agent": user_agent,
            },
            raise_errors=raise_errors,
        )

    async def find_session_by_token(self, token: str, include_user: bool = False,
                                    raise_errors: bool = False) -> Optional[UserSession]:
        session = await self.find_by("token", token, raise_errors=raise_errors)
        if include_user:
            await self.attach_user(session, raise_errors=raise_errors)
        return session

    async def find_session_by_id(self, session_id: str, include_user: bool = False,
                                 raise_errors: bool = False) -> Optional[UserSession]:
        session = await self.find_by("id", session_id, raise_errors=raise_errors)
        if include_user:
            await self.attach_user(session, raise_errors=raise_errors)
        return session

    async def attach_user(self, session: Optional[UserSession],
                          raise_errors: bool = False) -> Optional[UserSession]:
        """Set ``session.user`` to its owner, read through the user cache."""
        if session is not None:
            session.user = await self.users.find_user_by_id(session.user_id,
                                                            raise_errors=raise_errors)
        return session

    async def touch_session(self, token: str,
                            raise_errors: bool = False) -> Optional[UserSession]:
        """Record activity on the session identified by ``token``."""
        session = await self.find_by("token", token, raise_errors=raise_errors)
        if session is None:
            return None
        return await self.update(
            session.id,
            {"last_activity": datetime.now(timezone.utc)},
            raise_errors=raise_errors,
        )

    async def delete_session(self, session_id: str, raise_errors: bool = False) -> bool:
        return await self.delete(session_id, raise_errors=raise_errors)

    async def find_all_user_sessions(self, user_id: str,
                                     raise_errors: bool = False) -> List[UserSession]:
        key = self.user_sessions_key(user_id)
        try:
            cached = await self._cached_list(key)
            if cached is not None:
                return cached

            sessions = await self._find_all(UserSession.user_id == user_id)
            if sessions:
                await self.cache.set(key, [self._dump(s) for s in sessions], ttl=self.cache_ttl)
            return sessions

        except Exception as e:
            return self._fail(e, [], "Error finding user sessions", raise_errors,
                              user_id=user_id)

    async def delete_all_user_sessions(self, user_id: str, raise_errors: bool = False) -> int:
        """Log the user out everywhere. Returns the number of sessions deleted."""
        try:
            count = await self._delete_many(UserSession.user_id == user_id)
            await self._purge([self.user_sessions_key(user_id)])
            self.logger.info("Deleted user sessions", user_id=user_id, count=count)
            return count

        except Exception as e:
            return self._fail(e, 0, "Error deleting all user sessions", raise_errors,
                              user_id=user_id)

    async def delete_all_sessions_except(self, user_id: str, token: str,
                                         raise_errors: bool = False) -> int:
        """Log the user out of every session but the one holding ``token``."""
        try:
            count = await self._delete_many(
                UserSession.user_id == user_id,
                UserSession.token != token,
            )
            await self._purge([self.user_sessions_key(user_id)])
            self.logger.info("Deleted other user sessions", user_id=user_id, count=count)
            return count

        except Exception as e:
            return self._fail(e, 0, "Error deleting sessions except current", raise_errors,
                              user_id=user_id)
