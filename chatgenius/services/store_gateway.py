"""Data store gateway.

Thin wrapper over the relational store (SQLAlchemy asyncio engine) and the
change feed (Redis pub/sub). Rows go in and come out as flat dicts keyed by
column name; callers translate them with the field mapper.

Every committed mutation publishes one change event per affected row on
``changes:<table>``, which is what ``subscribe()`` listens to.
"""

import logging
from collections.abc import Hashable, Mapping, Sequence
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import Table, delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.sql import Delete, Select, Update

import chatgenius.models  # noqa: F401  registers every table on Base.metadata
from chatgenius.core.config import Settings
from chatgenius.core.database import Base, create_engine_from_settings, create_session_maker
from chatgenius.core.exceptions import NOT_FOUND, StorageError
from chatgenius.core.redis import CHANGE_FEED_PREFIX, RedisChangeFeed, publish_change_event
from chatgenius.schemas.change import ChangeEvent, ChangeEventType
from chatgenius.services.subscription import ChangeCallback, ChangeFilter, Subscription

logger = logging.getLogger(__name__)

COLLECTIONS = frozenset(["users", "channels", "channel_members", "messages"])

Row = dict[str, Any]


def _storage_error(operation: str, table: str, error: SQLAlchemyError) -> StorageError:
    """Wrap a SQLAlchemy error, keeping the driver's SQLSTATE when present."""
    orig = getattr(error, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    message = str(orig) if orig is not None else str(error)
    logger.error(f"Storage error during {operation} on {table}: {message} (code={code})")
    return StorageError(f"{operation} on {table} failed: {message}", code=code)


class StoreGateway:
    """Query, mutation and subscription primitives over the chat collections."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        redis_pool: aioredis.ConnectionPool,
        feed_prefix: str = CHANGE_FEED_PREFIX,
        engine: AsyncEngine | None = None,
    ):
        self._session_maker = session_maker
        self._redis_pool = redis_pool
        self._feed_prefix = feed_prefix
        self._engine = engine

    @classmethod
    def from_settings(cls, settings: Settings) -> "StoreGateway":
        """Create a gateway with its own engine and Redis pool."""
        engine = create_engine_from_settings(settings)
        pool = aioredis.ConnectionPool.from_url(
            str(settings.redis_url),
            decode_responses=True,
        )
        logger.info("Store gateway configured")
        return cls(
            session_maker=create_session_maker(engine),
            redis_pool=pool,
            feed_prefix=settings.change_feed_prefix,
            engine=engine,
        )

    async def close(self) -> None:
        """Dispose the engine and disconnect the Redis pool."""
        if self._engine is not None:
            await self._engine.dispose()
        await self._redis_pool.disconnect()
        logger.info("Store gateway closed")

    # =========================================================================
    # Statement builders
    # =========================================================================

    @staticmethod
    def table(name: str) -> Table:
        if name not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {name}")
        return Base.metadata.tables[name]

    @staticmethod
    def _where(table: Table, filters: Mapping[str, Any] | None) -> list:
        clauses = []
        for column, value in (filters or {}).items():
            col = table.c[column]
            clauses.append(col.is_(None) if value is None else col == value)
        return clauses

    def build_select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        in_filters: Mapping[str, Sequence[Any]] | None = None,
        order_by: str | None = None,
        ascending: bool = True,
    ) -> Select:
        t = self.table(table)
        stmt = select(t).where(*self._where(t, filters))
        for column, values in (in_filters or {}).items():
            stmt = stmt.where(t.c[column].in_(list(values)))
        if order_by is not None:
            col = t.c[order_by]
            stmt = stmt.order_by(col.asc() if ascending else col.desc())
        return stmt

    def build_update(
        self, table: str, values: Mapping[str, Any], filters: Mapping[str, Any]
    ) -> Update:
        t = self.table(table)
        if not filters:
            raise ValueError(f"Refusing unfiltered update on {table}")
        return update(t).where(*self._where(t, filters)).values(**values).returning(*t.c)

    def build_delete(self, table: str, filters: Mapping[str, Any]) -> Delete:
        t = self.table(table)
        if not filters:
            raise ValueError(f"Refusing unfiltered delete on {table}")
        return delete(t).where(*self._where(t, filters)).returning(*t.c)

    # =========================================================================
    # Queries
    # =========================================================================

    async def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        in_filters: Mapping[str, Sequence[Any]] | None = None,
        order_by: str | None = None,
        ascending: bool = True,
    ) -> list[Row]:
        """Select rows matching equality and IN filters.

        An empty IN list matches nothing and skips the round-trip.
        """
        if in_filters and any(len(values) == 0 for values in in_filters.values()):
            return []

        stmt = self.build_select(table, filters, in_filters, order_by, ascending)
        try:
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as e:
            raise _storage_error("select", table, e) from e

    async def select_one(self, table: str, filters: Mapping[str, Any]) -> Row:
        """Select exactly one row.

        Raises:
            StorageError: with code NOT_FOUND when nothing matches
        """
        rows = await self.select(table, filters)
        if not rows:
            raise StorageError(f"No row in {table} matching {dict(filters)}", code=NOT_FOUND)
        return rows[0]

    # =========================================================================
    # Mutations
    # =========================================================================

    async def insert(self, table: str, values: Mapping[str, Any]) -> Row:
        """Insert one row and return it as stored."""
        t = self.table(table)
        stmt = insert(t).values(**values).returning(*t.c)
        rows = await self._mutate("insert", table, stmt, "INSERT")
        return rows[0]

    async def update(
        self, table: str, values: Mapping[str, Any], filters: Mapping[str, Any]
    ) -> list[Row]:
        """Update matching rows and return them (possibly none)."""
        stmt = self.build_update(table, values, filters)
        return await self._mutate("update", table, stmt, "UPDATE")

    async def delete(self, table: str, filters: Mapping[str, Any]) -> list[Row]:
        """Delete matching rows and return them (possibly none)."""
        stmt = self.build_delete(table, filters)
        return await self._mutate("delete", table, stmt, "DELETE")

    async def _mutate(
        self, operation: str, table: str, stmt, event_type: ChangeEventType
    ) -> list[Row]:
        async with self._session_maker() as session:
            try:
                result = await session.execute(stmt)
                rows = [dict(row) for row in result.mappings()]
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise _storage_error(operation, table, e) from e

        logger.debug(f"{operation} on {table} affected {len(rows)} row(s)")
        for row in rows:
            await self._publish(table, event_type, row)
        return rows

    async def _publish(self, table: str, event_type: ChangeEventType, row: Row) -> None:
        event = ChangeEvent(
            event_type=event_type,
            table=table,
            new=row if event_type != "DELETE" else {},
            old=row if event_type == "DELETE" else {},
        )
        await publish_change_event(
            self._redis_pool,
            table,
            event.model_dump(mode="json", by_alias=True),
            prefix=self._feed_prefix,
        )

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def open_feed(self, table: str) -> RedisChangeFeed:
        return RedisChangeFeed(self._redis_pool, table, prefix=self._feed_prefix)

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        filter: ChangeFilter | None = None,
        key: Hashable = None,
    ) -> Subscription:
        """Build a (not yet started) subscription to a table's change events."""
        self.table(table)
        return Subscription(self.open_feed, table, callback, filter=filter, key=key)
