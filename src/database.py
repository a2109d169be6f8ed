"""
Database connection and session management.
Uses SQLAlchemy 2.0 async pattern.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from src.config import get_settings
from src.kernel.models.audit import ACTOR_KEY


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with per-backend options."""
    if database_url.startswith("sqlite"):
        # SQLite with NullPool: every session gets its own connection, avoiding
        # "cannot commit transaction – SQL statements in progress" from StaticPool.
        sqlite_engine = create_async_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 15},
            poolclass=NullPool,
        )

        @event.listens_for(sqlite_engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable WAL mode + foreign keys on every new SQLite connection."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=15000")
            cursor.close()

        return sqlite_engine

    # PostgreSQL settings with connection pooling
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_timeout=10,
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


settings = get_settings()

engine = build_engine(settings.database_url, echo=settings.debug)

# Session factory
async_session_maker = build_session_maker(engine)


@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
    session: Optional[AsyncSession] = None,
    actor: Optional[str] = None,
) -> AsyncIterator[AsyncSession]:
    """
    Scoped transaction handle.

    When ``session`` is given the caller owns the transaction and the work
    joins it. Otherwise a new session is opened and its transaction commits
    on exit; any exception, including cancellation, rolls it back.
    """
    if session is not None:
        if actor is not None:
            session.info.setdefault(ACTOR_KEY, actor)
        yield session
        return

    async with session_factory() as new_session:
        if actor is not None:
            new_session.info[ACTOR_KEY] = actor
        async with new_session.begin():
            yield new_session



async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Initialize database tables."""
    # Import Base from kernel models to ensure all models are registered
    from src.kernel.models import Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
