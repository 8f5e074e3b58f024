"""
Database engine and session management for the Bullion Order Backend.

Uses SQLAlchemy async engine (aiosqlite for SQLite URLs). The store handle is
an explicit Database object built by the process entry point (main.lifespan)
and handed to the repositories; nothing here opens a connection at import time.
"""
import logging

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


def to_async_url(url: str) -> str:
    """Convert sqlite:///... → sqlite+aiosqlite:///... for the async driver."""
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


class Database:
    """
    Store handle: one engine plus the session factory bound to it.

    Lifecycle is owned by whoever constructs it (the app lifespan in
    production, fixtures in tests).
    """

    def __init__(self, url: str, *, echo: bool = False, **engine_kwargs):
        self.url = to_async_url(url)
        self.engine: AsyncEngine = create_async_engine(
            self.url,
            echo=echo,
            future=True,
            **engine_kwargs,
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def init_db(self) -> None:
        """Create all tables. Called once on server startup."""
        # Import models so Base.metadata knows about them
        import db_models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database tables created (or already exist)")

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine disposed")


def get_database(request: Request) -> Database:
    """FastAPI dependency — the store handle attached at startup."""
    return request.app.state.database

