"""Async database session and engine configuration."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, skipping pool options SQLite does not support."""
    engine_kwargs: dict = {"echo": echo}
    if not url.startswith("sqlite"):
        engine_kwargs.update(pool_size=10, max_overflow=5, pool_pre_ping=True)
    return create_async_engine(url, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine; objects stay usable after commit."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

