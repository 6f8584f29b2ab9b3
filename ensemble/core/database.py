"""Async engine, per-request sessions and dialect-aware upserts.

One request runs on one session. The session commits when the handler
returns and rolls back when it raises, so a request never leaves half of
its writes behind.
"""

from collections.abc import AsyncGenerator
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

engine = create_async_engine(
    settings.database_url_async,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    echo=settings.database_echo,
    pool_pre_ping=True,
    pool_recycle=300,
)

# Engines hand out plain ORM objects after commit; nothing is lazily reloaded
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: commit on success, roll back on any error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"[DB] Rolled back after database error: {e}")
            raise
        except Exception as e:
            await session.rollback()
            logger.info(f"[DB] Rolled back after failed request: {type(e).__name__}")
            raise


async def init_db() -> None:
    """Create missing tables. Development only; deployed databases are migrated."""
    from ..models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()


def dialect_insert(session: AsyncSession, model):
    """INSERT construct with ``on_conflict_do_update`` for the bound dialect.

    PostgreSQL in production, SQLite under test. Both dialect inserts take
    the same ``index_elements`` / ``set_`` / ``where`` arguments.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Upserts are not supported on dialect '{dialect}'")
    return insert(model)
