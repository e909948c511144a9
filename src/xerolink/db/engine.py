"""Database engine and session management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel
from structlog import get_logger

from xerolink.config.storage import DEFAULT_DB_PATH


logger = get_logger(__name__)


def get_db_url(path: Path | None = None) -> str:
    """Get SQLite database URL."""
    db_path = path or DEFAULT_DB_PATH
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite+aiosqlite:///{db_path}"


class Database:
    """Owns one async engine and hands out sessions."""

    def __init__(self, path: Path | None = None, *, echo: bool = False) -> None:
        self.path = path or DEFAULT_DB_PATH
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._session_maker: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        """Create the engine and tables."""
        if self._engine is not None:
            return
        # Register table metadata before create_all
        from xerolink.db import models  # noqa: F401

        self._engine = create_async_engine(get_db_url(self.path), echo=self._echo)
        self._session_maker = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )

        async with self._engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("database_initialized", path=str(self.path))

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get an async database session that commits on success."""
        if self._session_maker is None:
            raise RuntimeError("Database not initialized. Call init() first.")

        async with self._session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
