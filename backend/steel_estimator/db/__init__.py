"""
Database layer: declarative base plus a lazily built async engine.

Nothing connects at import time. The engine and session factory are created
on first use, and only when DATABASE_URL is set; without it the API runs on
the in-memory store.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from steel_estimator import config

logger = logging.getLogger("steel-estimator.db")


class Base(DeclarativeBase):
    pass


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def normalise_url(url: str) -> str:
    """Point bare postgres URLs (as handed out by most hosts) at the asyncpg driver."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def is_configured() -> bool:
    return bool(config.DATABASE_URL)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        if not is_configured():
            raise RuntimeError("DATABASE_URL is not set")
        _engine = create_async_engine(
            normalise_url(config.DATABASE_URL),
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            pool_timeout=5,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _session_factory


async def init_db() -> None:
    """Create missing tables. A no-op in dev mode; an unreachable database is logged, not raised."""
    if not is_configured():
        logger.warning("DATABASE_URL not set, skipping init_db() (dev mode)")
        return
    from steel_estimator.models import orm_models  # noqa: F401
    try:
        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialized.")
    except Exception as e:
        logger.warning(f"init_db skipped (DB not available): {e}")


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
