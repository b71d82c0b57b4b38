"""Database session management for DAMP Orchestrator."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from damp_orchestrator.config import Settings, get_settings
from damp_orchestrator.models.base import Base
from damp_orchestrator.utils import get_logger

logger = get_logger(__name__)


def build_db_url(state_db: str) -> str:
    """
    Convert a configured database path into an async SQLite URL.

    Args:
        state_db: Filesystem path or sqlite URL

    Returns:
        sqlite+aiosqlite URL
    """
    if state_db.startswith("sqlite+aiosqlite"):
        return state_db
    if state_db.startswith("sqlite"):
        return state_db.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return f"sqlite+aiosqlite:///{state_db}"


class DatabaseManager:
    """Manages database connections and sessions."""

    def __init__(self, settings: Settings | None = None, db_url: str | None = None) -> None:
        """
        Initialize database manager.

        Args:
            settings: Settings holding the state database path
            db_url: Explicit database URL, overriding settings
        """
        self.settings = settings or get_settings()
        self.db_url = db_url or build_db_url(self.settings.state_db)
        self._engine: AsyncEngine | None = None
        self._session_maker: async_sessionmaker[AsyncSession] | None = None

    def get_engine(self) -> AsyncEngine:
        """
        Get or create async database engine.

        Returns:
            AsyncEngine instance
        """
        if self._engine is None:
            self._engine = create_async_engine(self.db_url, echo=False, future=True)
            logger.info("Database engine created", extra={"db_url": self.db_url})

        return self._engine

    def get_session_maker(self) -> async_sessionmaker[AsyncSession]:
        """
        Get or create session maker.

        Returns:
            async_sessionmaker instance
        """
        if self._session_maker is None:
            self._session_maker = async_sessionmaker(
                self.get_engine(),
                class_=AsyncSession,
                expire_on_commit=False,
            )

        return self._session_maker

    async def create_tables(self) -> None:
        """Create all database tables."""
        engine = self.get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    async def close(self) -> None:
        """Close database engine."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None
            logger.info("Database engine closed")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session that commits on success.

        Yields:
            AsyncSession instance
        """
        session_maker = self.get_session_maker()
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
