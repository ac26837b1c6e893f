from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager


def create_engine_for_url(database_url: str, echo: bool = False) -> AsyncEngine:
    """Creates an async engine, applying sqlite-specific options when needed."""
    kwargs = {"echo": echo}
    if database_url.startswith("sqlite"):
        # In-memory sqlite databases are per-connection; keep a single shared one.
        if ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite+aiosqlite:"):
            from sqlalchemy.pool import StaticPool
            kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_pre_ping"] = True
        kwargs["pool_recycle"] = 3600
    return create_async_engine(database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Returns a session factory bound to ``engine``."""
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
        class_=AsyncSession,
    )


@asynccontextmanager
async def get_db_session_context_manager(
    existing_session: Optional[AsyncSession],
    session_factory: Optional[async_sessionmaker[AsyncSession]],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Provides an SQLAlchemy async session within an asynchronous context manager.

    If an `existing_session` is provided, it yields that session and the caller
    is responsible for its lifecycle (commit, rollback, close).
    Otherwise, it creates a new session from `session_factory` and ensures it
    is committed on successful exit, rolled back on error, and closed regardless.
    """
    if existing_session is not None:
        yield existing_session
        return

    if session_factory is None:
        raise ValueError("session_factory is required when no existing session is given")
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
