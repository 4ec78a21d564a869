"""Async SQLAlchemy engine and session factory.

Provides:
- get_engine(): Lazily created engine singleton
- get_session(): Session factory injected into the training repositories
- init_db(): Create the training tables if they don't exist
- close_db(): Dispose of the engine on shutdown

Tenant isolation is row-level: every training table carries tenant_id and
every repository query filters on it.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

from src.app.config import get_settings
from src.training.store import TrainingBase

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        kwargs: dict[str, Any] = {"echo": False}
        # SQLite uses a single-connection pool without sizing options
        if not settings.DATABASE_URL.startswith("sqlite"):
            kwargs.update(
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
                pool_pre_ping=True,
            )
        _engine = create_async_engine(settings.DATABASE_URL, **kwargs)
    return _engine


# ── Session Factory ─────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the engine singleton."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create the training tables if they don't exist.

    Production deployments run Alembic migrations instead; this keeps local
    development and SQLite setups working without them.
    """
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(TrainingBase.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
