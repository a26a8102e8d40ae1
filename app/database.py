"""
database.py — Async SQLAlchemy Engine & Session Factory
Water Quality Tracker
"""

import asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool
from app.config import settings
from loguru import logger


# ── Base ──────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass


# ── Engine ────────────────────────────────────────────────────────────────────
def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine; SQLite URLs share a single connection."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, poolclass=StaticPool, echo=settings.DB_ECHO)
    return create_async_engine(
        database_url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        echo=settings.DB_ECHO,
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# ── Lifecycle helpers ─────────────────────────────────────────────────────────
async def init_db(engine: AsyncEngine, timeout: float = settings.DB_CONNECT_TIMEOUT_SECONDS) -> None:
    """Check connectivity and create all tables (use Alembic for real migrations)."""

    async def _create() -> None:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(Base.metadata.create_all)

    await asyncio.wait_for(_create(), timeout=timeout)
    logger.info("Database tables initialised.")


async def close_db(engine: AsyncEngine) -> None:
    await engine.dispose()
    logger.info("Database connection pool closed.")
