"""Unit tests for the session repository and its per-user collection key."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from storefront.repositories import RecordNotFoundError, SessionRepository


@pytest.fixture
def expires_at():
    return datetime.now(timezone.utc) + timedelta(days=7)


@pytest.fixture
def session_factory(session_repository, expires_at):
    async def _factory(user_id: str, token: str, **fields):
        return await session_repository.create_session(
            user_id, token, expires_at, raise_errors=True, **fields
        )

    return _factory


class TestCreateAndFind:
    """Test suite for session creation and lookups."""

    @pytest.mark.asyncio
    async def test_create_caches_id_and_token(self, user_factory, session_factory, cache):
        user = await user_factory()

        session = await session_factory(user.id, "tok-1", ip_address="10.0.0.1", user_agent="pytest")

        assert session.ip_address == "10.0.0.1"
        assert await cache.exists(f"session:id:{session.id}")
        assert await cache.exists("session:token:tok-1")

    @pytest.mark.asyncio
    async def test_create_drops_cached_session_list(self, user_factory, session_factory,
                                                    session_repository, cache):
        user = await user_factory()
        await session_factory(user.id, "tok-1")
        await session_repository.find_all_user_sessions(user.id)
        assert await cache.exists(SessionRepository.user_sessions_key(user.id))

        await session_factory(user.id, "tok-2")

        assert not await cache.exists(SessionRepository.user_sessions_key(user.id))
        assert len(await session_repository.find_all_user_sessions(user.id)) == 2

    @pytest.mark.asyncio
    async def test_find_by_token_and_id(self, user_factory, session_factory, session_repository, cache):
        user = await user_factory()
        session = await session_factory(user.id, "tok-1")
        await cache.flush_all()

        by_token = await session_repository.find_session_by_token("tok-1")
        by_id = await session_repository.find_session_by_id(session.id)

        assert by_token.id == by_id.id == session.id
        assert by_token.user_id == user.id

    @pytest.mark.asyncio
    async def test_missing_token(self, session_repository):
        assert await session_repository.find_session_by_token("nope") is None

        with pytest.raises(RecordNotFoundError):
            await session_repository.find_session_by_token("nope", raise_errors=True)

    @pytest.mark.asyncio
    async def test_none_token_returns_none(self, session_repository):
        assert await session_repository.find_session_by_token(None) is None

    @pytest.mark.asyncio
    async def test_include_user_attaches_owner(self, user_factory, session_factory,
                                               session_repository, cache):
        user = await user_factory()
        session = await session_factory(user.id, "tok-1")

        cached = await session_repository.find_session_by_token("tok-1", include_user=True)
        await cache.flush_all()
        loaded = await session_repository.find_session_by_id(session.id, include_user=True)

        assert cached.user.email == "ada@example.com"
        assert loaded.user.id == user.id
        assert "user" not in await cache.get("session:token:tok-1")

    @pytest.mark.asyncio
    async def test_owner_not_attached_unless_asked(self, user_factory, session_factory,
                                                   session_repository):
        user = await user_factory()
        await session_factory(user.id, "tok-1")

        assert (await session_repository.find_session_by_token("tok-1")).user is None

    @pytest.mark.asyncio
    async def test_expiry(self, user_factory, session_repository):
        user = await user_factory()
        past = datetime.now(timezone.utc) - timedelta(minutes=1)

        session = await session_repository.create_session(user.id, "old", past)

        assert session.is_expired is True


class TestUserSessionList:
    """Test suite for the sessions:user:<id> collection key."""

    @pytest.mark.asyncio
    async def test_list_is_cached(self, user_factory, session_factory, session_repository, database):
        user = await user_factory()
        await session_factory(user.id, "tok-1")
        await session_factory(user.id, "tok-2")

        first = await session_repository.find_all_user_sessions(user.id)
        with patch.object(database, "get_session", wraps=database.get_session) as spy:
            second = await session_repository.find_all_user_sessions(user.id)

        assert sorted(s.token for s in first) == ["tok-1", "tok-2"]
        assert [s.id for s in second] == [s.id for s in first]
        spy.assert_not_called()

    @pytest.mark.asyncio
    async def test_unreadable_list_is_reloaded(self, user_factory, session_factory,
                                               session_repository, cache):
        user = await user_factory()
        await session_factory(user.id, "tok-1")
        key = SessionRepository.user_sessions_key(user.id)
        await cache.set(key, [{"token": "missing-everything-else"}])

        sessions = await session_repository.find_all_user_sessions(user.id)

        assert [s.token for s in sessions] == ["tok-1"]
        assert (await cache.get(key))[0]["token"] == "tok-1"

    @pytest.mark.asyncio
    async def test_empty_list_is_not_cached(self, user_factory, session_repository, cache):
        user = await user_factory()

        assert await session_repository.find_all_user_sessions(user.id) == []
        assert not await cache.exists(SessionRepository.user_sessions_key(user.id))

    @pytest.mark.asyncio
    async def test_delete_session_invalidates_list(self, user_factory, session_factory,
                                                   session_repository, cache):
        user = await user_factory()
        kept = await session_factory(user.id, "tok-1")
        gone = await session_factory(user.id, "tok-2")
        await session_repository.find_all_user_sessions(user.id)

        assert await session_repository.delete_session(gone.id) is True

        assert not await cache.exists(SessionRepository.user_sessions_key(user.id))
        assert not await cache.exists(f"session:id:{gone.id}")
        assert not await cache.exists("session:token:tok-2")
        remaining = await session_repository.find_all_user_sessions(user.id)
        assert [s.id for s in remaining] == [kept.id]

    @pytest.mark.asyncio
    async def test_delete_missing_session(self, session_repository):
        assert await session_repository.delete_session("missing") is False


class TestTouch:
    """Test suite for touch_session."""

    @pytest.mark.asyncio
    async def test_touch_updates_last_activity(self, user_factory, session_factory,
                                               session_repository, cache):
        user = await user_factory()
        session = await session_factory(user.id, "tok-1")
        await session_repository.find_all_user_sessions(user.id)

        touched = await session_repository.touch_session("tok-1")

        assert touched.id == session.id
        assert touched.last_activity >= session.last_activity
        assert not await cache.exists(SessionRepository.user_sessions_key(user.id))
        assert await cache.get("session:token:tok-1") == touched.model_dump(mode="json")

    @pytest.mark.asyncio
    async def test_touch_unknown_token(self, session_repository):
        assert await session_repository.touch_session("nope") is None


class TestBulkDelete:
    """Test suite for logging a user out of many sessions."""

    @pytest.mark.asyncio
    async def test_delete_all_user_sessions(self, user_factory, session_factory,
                                            session_repository, cache):
        user = await user_factory()
        other = await user_factory(email="grace@example.com", username="grace")
        await session_factory(user.id, "tok-1")
        await session_factory(user.id, "tok-2")
        await session_factory(other.id, "tok-3")
        await session_repository.find_all_user_sessions(user.id)

        count = await session_repository.delete_all_user_sessions(user.id)

        assert count == 2
        assert not await cache.exists("session:token:tok-1")
        assert not await cache.exists("session:token:tok-2")
        assert not await cache.exists(SessionRepository.user_sessions_key(user.id))
        assert await session_repository.find_all_user_sessions(user.id) == []
        assert await session_repository.find_session_by_token("tok-3") is not None

    @pytest.mark.asyncio
    async def test_delete_all_sessions_except_current(self, user_factory, session_factory,
                                                      session_repository, cache):
        user = await user_factory()
        await session_factory(user.id, "keep")
        await session_factory(user.id, "drop-1")
        await session_factory(user.id, "drop-2")

        count = await session_repository.delete_all_sessions_except(user.id, "keep")

        assert count == 2
        assert await cache.exists("session:token:keep")
        assert not await cache.exists("session:token:drop-1")
        assert [s.token for s in await session_repository.find_all_user_sessions(user.id)] == ["keep"]

    @pytest.mark.asyncio
    async def test_bulk_delete_failure_returns_zero(self, session_repository, database):
        with patch.object(database, "get_session", side_effect=RuntimeError("boom")):
            assert await session_repository.delete_all_user_sessions("u1") == 0
