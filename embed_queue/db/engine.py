# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Async SQLAlchemy engine (asyncpg) shared by the FastAPI app.
#
# SESSION PATTERNS:
#
# 1. Dependency-injected (get_async_session via Depends):
#    Auto-commits when the request handler returns, rolls back on error.
#
# 2. Session factory (async_session_factory, or one built by
#    create_worker_session_factory):
#    Queue components (JobStore, ChunkStore, LockManager) receive a factory
#    and open one short session per operation. Every status change is
#    committed immediately, so a crash mid-job never rolls back the lock
#    or the job's `processing` marker together with unrelated work.
#
# IMPORTANT: Celery tasks run each dispatch under asyncio.run(), i.e. on a
# fresh event loop per run. Pooled asyncpg connections are bound to the loop
# that opened them, so workers must use create_worker_session_factory()
# (NullPool) rather than the module-level factory below.
# =============================================================================

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from embed_queue.config import settings

# ---------------------------------------------------------------------------
# Async Engine
# ---------------------------------------------------------------------------
# - echo=settings.debug: logs every SQL statement in debug mode.
# - pool_size=5 / max_overflow=10: fine for one API process.
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
)

# ---------------------------------------------------------------------------
# Session Factory
# ---------------------------------------------------------------------------
# expire_on_commit=False: loaded objects stay readable after commit without
# triggering a lazy refresh (which fails outside the session in async code).
# ---------------------------------------------------------------------------
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def create_worker_session_factory(
    database_url: str | None = None,
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Build a throwaway engine + session factory for one worker run.

    Uses NullPool so no connection outlives the event loop that opened it.
    The caller owns the engine and must `await engine.dispose()` when done.
    """
    engine = create_async_engine(
        database_url or settings.database_url,
        echo=settings.debug,
        poolclass=NullPool,
    )
    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency returning the shared session factory."""
    return async_session_factory


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    The session is committed when the handler returns and rolled back if
    the handler raises.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
