"""Cache-aside repository base.

Reads consult the cache before the relational store and populate it on a
miss. Writes go to the relational store first (through the retry executor);
afterwards every cache key derived from the record is either rewritten or
purged, so no key keeps serving a stale copy.
"""

from typing import (Any, Awaitable, Callable, Dict, Generic, Iterable, List,
                    Mapping, Optional, Tuple, Type, TypeVar, Union)

import structlog
from pydantic import ValidationError
from sqlmodel import SQLModel, select

from storefront.core.cache import CacheService
from storefront.core.config import Settings
from storefront.core.database import Database
from storefront.core.logging import get_logger, log_store_failure
from storefront.core.retry import RetryExhaustedError, retry_operation
from storefront.repositories.errors import (
    ErrorKind,
    PermanentStoreError,
    RecordNotFoundError,
    RepositoryError,
    TransientStoreError,
)
from storefront.repositories.keys import EntityKeys

ModelT = TypeVar("ModelT", bound=SQLModel)
T = TypeVar("T")


class CacheAsideRepository(Generic[ModelT]):
    """Reads and writes one entity type through the cache and the database.

    Subclasses set ``model``, ``entity`` and ``unique_fields``. Every cache
    key of a record is ``<entity>:<field>:<value>`` for each unique field.

    All public methods swallow failures: they log and return ``None``,
    ``False``, ``[]`` or ``0``. Pass ``raise_errors=True`` to get a
    :class:`RepositoryError` instead.
    """

    model: Type[ModelT]
    entity: str
    unique_fields: Tuple[str, ...] = ("id",)

    def __init__(
        self,
        database: Database,
        cache: CacheService,
        settings: Settings,
        logger: Optional[structlog.BoundLogger] = None,
        cache_ttl: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ):
        self.database = database
        self.cache = cache
        self.settings = settings
        self.keys = EntityKeys(self.entity, tuple(self.unique_fields))
        self.logger = logger or get_logger(__name__).bind(entity=self.entity)
        self.cache_ttl = cache_ttl or settings.cache_ttl
        self.max_retries = settings.db_max_retries if max_retries is None else max_retries
        self.retry_base_delay = (settings.db_retry_base_delay
                                 if retry_base_delay is None else retry_base_delay)

    # ============================================================================
    # Hooks
    # ============================================================================

    def related_keys(self, record: ModelT) -> List[str]:
        """Extra keys (cached lists and such) dropped whenever ``record`` changes."""
        return []

    # ============================================================================
    # Internals
    # ============================================================================

    def _dump(self, record: ModelT) -> Dict[str, Any]:
        return record.model_dump(mode="json")

    def _load(self, data: Any) -> ModelT:
        return self.model.model_validate(data)

    def _build(self, data: Union[ModelT, Mapping[str, Any]]) -> ModelT:
        if isinstance(data, self.model):
            return data
        return self.model.model_validate(dict(data))

    @staticmethod
    def _changes(data: Union[SQLModel, Mapping[str, Any]]) -> Dict[str, Any]:
        if isinstance(data, SQLModel):
            changes = data.model_dump(exclude_unset=True)
        else:
            changes = dict(data)
        changes.pop("id", None)
        return changes

    async def _run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run one relational call through the retry executor.

        Exhausted retries become TransientStoreError, other failures
        PermanentStoreError.
        """
        try:
            return await retry_operation(
                operation,
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay,
                logger=self.logger,
            )
        except RetryExhaustedError as e:
            raise TransientStoreError(
                f"{self.entity} store unavailable after {e.attempts} attempt(s)",
                entity=self.entity,
                cause=e.last_error,
            ) from e
        except RepositoryError:
            raise
        except Exception as e:
            raise PermanentStoreError(str(e), entity=self.entity, cause=e) from e

    def _fail(self, error: Exception, default: T, message: str,
              raise_errors: bool, **context) -> T:
        if raise_errors:
            if isinstance(error, RepositoryError):
                raise error
            raise PermanentStoreError(str(error), entity=self.entity, cause=error) from error

        kind = getattr(error, "kind", ErrorKind.PERMANENT)
        log_store_failure(self.logger, message, error, kind.value, **context)
        return default

    async def _find_one(self, *conditions) -> Optional[ModelT]:
        async def lookup():
            async with self.database.get_session() as session:
                result = await session.execute(select(self.model).where(*conditions))
                return result.scalar_one_or_none()

        return await self._run(lookup)

    async def _find_all(self, *conditions) -> List[ModelT]:
        async def lookup():
            async with self.database.get_session() as session:
                result = await session.execute(select(self.model).where(*conditions))
                return list(result.scalars().all())

        return await self._run(lookup)

    async def _cached(self, key: str) -> Optional[ModelT]:
        data = await self.cache.get(key, ttl=self.cache_ttl)
        if data is None:
            return None
        try:
            return self._load(data)
        except ValidationError as e:
            await self._drop_unreadable(key, e)
            return None

    async def _cached_list(self, key: str) -> Optional[List[ModelT]]:
        """Cached list under ``key``; None on a miss or when any item is unreadable."""
        data = await self.cache.get(key, ttl=self.cache_ttl)
        if data is None:
            return None
        try:
            return [self._load(item) for item in data]
        except (TypeError, ValidationError) as e:
            await self._drop_unreadable(key, e)
            return None

    async def _drop_unreadable(self, key: str, error: Exception) -> None:
        self.logger.warning("Dropping unreadable cache entry", cache_key=key, error=str(error))
        await self.cache.delete(key)

    async def _cache_record(self, record: ModelT) -> None:
        data = self._dump(record)
        await self.cache.pipeline(
            [(key, data) for key in self.keys.keys_for(record)],
            ttl=self.cache_ttl,
        )

    async def _purge(self, keys: Iterable[str]) -> int:
        return await self.cache.pipeline_delete(keys)

    async def _delete_many(self, *conditions) -> int:
        """Delete all matching rows and purge every key that referenced them."""
        async def remove():
            async with self.database.get_session() as session:
                result = await session.execute(select(self.model).where(*conditions))
                keys: List[str] = []
                rows = list(result.scalars().all())
                for row in rows:
                    keys.extend(self.keys.keys_for(row))
                    keys.extend(self.related_keys(row))
                    await session.delete(row)
                await session.commit()
                return len(rows), keys

        count, keys = await self._run(remove)
        await self._purge(keys)
        return count

    # ============================================================================
    # Operations
    # ============================================================================

    async def create(self, data: Union[ModelT, Mapping[str, Any]],
                     raise_errors: bool = False) -> Optional[ModelT]:
        """Insert a record and cache it under all of its keys."""
        try:
            # Built once so every retry inserts the same id
            payload = self._build(data).model_dump()

            async def insert():
                record = self.model.model_validate(payload)
                async with self.database.get_session() as session:
                    session.add(record)
                    await session.commit()
                    await session.refresh(record)
                    return record

            record = await self._run(insert)
            await self._purge(self.related_keys(record))
            await self._cache_record(record)
            self.logger.info(f"Created {self.entity}", record_id=record.id)
            return record

        except Exception as e:
            return self._fail(e, None, f"Error creating {self.entity}", raise_errors)

    async def find_by(self, field: str, value: Any,
                      raise_errors: bool = False) -> Optional[ModelT]:
        """Look a record up by one of its unique fields, cache first."""
        try:
            key = self.keys.key(field, value)
            record = await self._cached(key)
            if record is None:
                record = await self._find_one(getattr(self.model, field) == value)
                if record is not None:
                    await self._cache_record(record)
        except Exception as e:
            return self._fail(e, None, f"Error finding {self.entity} by {field}",
                              raise_errors, field=field)

        if record is None and raise_errors:
            raise RecordNotFoundError(f"{self.entity} with {field}={value} not found",
                                      entity=self.entity)
        return record

    async def update(self, record_id: Any, data: Union[SQLModel, Mapping[str, Any]],
                     raise_errors: bool = False) -> Optional[ModelT]:
        """Apply ``data`` to the record and re-key the cache.

        Keys derived from the pre-update record are purged before the new set
        is written, so a changed unique value (e.g. email) stops resolving.
        """
        try:
            changes = self._changes(data)

            async def apply():
                async with self.database.get_session() as session:
                    record = await session.get(self.model, record_id)
                    if record is None:
                        return None
                    previous_keys = self.keys.keys_for(record) + self.related_keys(record)
                    for name, value in changes.items():
                        setattr(record, name, value)
                    session.add(record)
                    await session.commit()
                    await session.refresh(record)
                    return previous_keys, record

            result = await self._run(apply)
            if result is None:
                raise RecordNotFoundError(f"{self.entity} {record_id} not found",
                                          entity=self.entity)

            previous_keys, record = result
            await self._purge(previous_keys + self.related_keys(record))
            await self._cache_record(record)
            return record

        except Exception as e:
            return self._fail(e, None, f"Error updating {self.entity}", raise_errors,
                              record_id=record_id)

    async def delete(self, record_id: Any, raise_errors: bool = False) -> bool:
        """Delete a record and purge all of its keys.

        Returns False without touching the store when the record cannot be
        found first.
        """
        try:
            record = await self.find_by("id", record_id, raise_errors=raise_errors)
            if record is None:
                return False

            async def remove():
                async with self.database.get_session() as session:
                    existing = await session.get(self.model, record_id)
                    if existing is None:
                        return None
                    keys = self.keys.keys_for(existing) + self.related_keys(existing)
                    await session.delete(existing)
                    await session.commit()
                    return keys

            deleted_keys = await self._run(remove)
            await self._purge(self.keys.keys_for(record) + self.related_keys(record)
                              + (deleted_keys or []))
            if deleted_keys is None:
                raise RecordNotFoundError(f"{self.entity} {record_id} already deleted",
                                          entity=self.entity)

            self.logger.info(f"Deleted {self.entity}", record_id=record_id)
            return True

        except Exception as e:
            return self._fail(e, False, f"Error deleting {self.entity}", raise_errors,
                              record_id=record_id)
