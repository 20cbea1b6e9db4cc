"""
Database engine and session management.

The API process uses the module-level AsyncSessionLocal. The worker and
the poller build their own engine with create_session_factory at startup and
dispose it on shutdown.
"""
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import settings


def create_engine(database_url: str | None = None, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the configured database."""
    return create_async_engine(
        database_url or settings.DATABASE_URL,
        echo=echo,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to engine."""
    return async_sessionmaker(engine, expire_on_commit=False)


engine = create_engine(echo=False)
AsyncSessionLocal = create_session_factory(engine)
