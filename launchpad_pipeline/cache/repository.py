"""
Launchpad Pipeline - SQL Trade Cache.

============================================================
PURPOSE
============================================================
TradeCacheStore on SQLAlchemy's async ORM.

RESPONSIBILITIES:
- Create the trade_events table
- Read a pool's cached trades, newest first
- Insert new trades, ignoring ones already stored

Every SQLAlchemy failure surfaces as CacheError so the
reconciler can degrade to live-only.

============================================================
"""

import logging
from typing import List, Optional, Sequence

from sqlalchemy import desc, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ..config import CacheConfig
from ..errors import CacheError, ConfigurationError
from ..types import TradeRecord
from .base import TradeCacheStore
from .models import Base, TradeEventModel


logger = logging.getLogger(__name__)


# ============================================================
# SQL TRADE CACHE
# ============================================================

class SqlTradeCache(TradeCacheStore):
    """
    Trade cache backed by any SQLAlchemy async database.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        """
        Initialize cache.

        Args:
            engine: SQLAlchemy async engine
            session_factory: Optional session factory bound to engine
        """
        self._engine = engine
        self._session_factory = session_factory or async_sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )

    @classmethod
    def from_config(cls, config: CacheConfig) -> "SqlTradeCache":
        """
        Create engine and cache from configuration.

        Raises:
            ConfigurationError: If no database URL is configured
        """
        if not config.database_url:
            raise ConfigurationError("Cache database URL is required", config_key="database_url")

        kwargs = {"echo": config.echo}
        if ":memory:" in config.database_url:
            # One shared connection, otherwise each session sees an empty database
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}

        engine = create_async_engine(config.database_url, **kwargs)
        logger.info(f"Trade cache engine created for: {config.database_url.split('@')[-1]}")
        return cls(engine)

    async def create_tables(self) -> None:
        """Create the cache tables if missing."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise CacheError("Failed to create cache tables", operation="write", original_error=e)

    # --------------------------------------------------------
    # READ
    # --------------------------------------------------------

    async def read_trades(self, pool_address: str, limit: Optional[int] = None) -> List[TradeRecord]:
        stmt = (
            select(TradeEventModel)
            .where(TradeEventModel.pool_address == pool_address)
            .order_by(desc(TradeEventModel.timestamp), desc(TradeEventModel.id))
        )
        if limit:
            stmt = stmt.limit(limit)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise CacheError(
                "Failed to read cached trades",
                pool_address=pool_address,
                operation="read",
                original_error=e,
            )

        records: List[TradeRecord] = []
        for row in rows:
            try:
                records.append(row.to_record())
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping unreadable cached trade {row.trade_id}: {e}")

        return records

    # --------------------------------------------------------
    # WRITE
    # --------------------------------------------------------

    async def write_trades(self, pool_address: str, records: Sequence[TradeRecord]) -> int:
        if not records:
            return 0

        # Deduplicate within the batch, first occurrence wins
        batch = {}
        for record in records:
            batch.setdefault(record.id, record)

        try:
            async with self._session_factory() as session:
                try:
                    inserted = await self._insert_missing(session, list(batch.values()))
                    await session.commit()
                except IntegrityError:
                    # A concurrent writer stored some rows first; retry one by one
                    await session.rollback()
                    inserted = await self._insert_each(session, list(batch.values()))
        except SQLAlchemyError as e:
            raise CacheError(
                "Failed to write trades",
                pool_address=pool_address,
                operation="write",
                original_error=e,
            )

        logger.debug(f"Cached {inserted} new trades for {pool_address}")
        return inserted

    async def _existing_ids(self, session: AsyncSession, trade_ids: List[str]) -> set:
        result = await session.execute(
            select(TradeEventModel.trade_id).where(TradeEventModel.trade_id.in_(trade_ids))
        )
        return set(result.scalars().all())

    async def _insert_missing(self, session: AsyncSession, records: List[TradeRecord]) -> int:
        existing = await self._existing_ids(session, [r.id for r in records])
        new_records = [r for r in records if r.id not in existing]
        session.add_all([TradeEventModel.from_record(r) for r in new_records])
        await session.flush()
        return len(new_records)

    async def _insert_each(self, session: AsyncSession, records: List[TradeRecord]) -> int:
        inserted = 0
        for record in records:
            try:
                session.add(TradeEventModel.from_record(record))
                await session.commit()
                inserted += 1
            except IntegrityError:
                await session.rollback()
        return inserted

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def close(self) -> None:
        """Dispose of the engine's connections."""
        await self._engine.dispose()
