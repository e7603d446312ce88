"""
config/database.py
Async SQLAlchemy engine, session factory, and base model.
Uses asyncpg for PostgreSQL in production; SQLite (aiosqlite) works for tests.
"""

from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from config.settings import settings


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"echo": settings.DEBUG}
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_timeout": settings.DATABASE_POOL_TIMEOUT,
        "pool_pre_ping": True,       # Detect stale connections
        "pool_recycle": 3600,        # Recycle connections every hour
        "echo": settings.DEBUG,      # Log SQL in debug mode
    }


# ── Engine ────────────────────────────────────────────────────
engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

# ── Session Factory ───────────────────────────────────────────
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,      # Don't expire after commit (async-safe)
    autoflush=False,
)


# ── Column Types ──────────────────────────────────────────────
class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as UTC.
    SQLite drops tzinfo on the way back; this puts it back.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Base Model ────────────────────────────────────────────────
class Base(DeclarativeBase):
    """All ORM models inherit from this."""
    pass


# ── Dependency ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: yields an async database session.
    Auto-commits on success, rolls back on error.

    Usage:
        @router.get("/users")
        async def get_users(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create all tables. Run during app startup."""
    # Import models so every table is registered on Base.metadata
    import shared.models.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose engine. Run during app shutdown."""
    await engine.dispose()
