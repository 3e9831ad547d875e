"""
Database configuration and management for Zone Sync
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .config import get_settings
from .logging_config import get_logger

# Dashboard tables (domains, dns_records), owned by the external store
DashboardBase = declarative_base()

# Tables owned by this service (zone_serials, publish_jobs)
StateBase = declarative_base()


def to_async_url(url: str) -> str:
    """Map a plain database URL onto its async driver"""
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


class Database:
    """Database connection manager"""

    def __init__(self, url: str, echo: Optional[bool] = None):
        self.url = to_async_url(url)
        self.echo = echo
        self.engine = None
        self.async_session = None
        self._initialized = False

    def _initialize_engine(self):
        """Initialize database engine and session maker"""
        if not self._initialized:
            echo = self.echo if self.echo is not None else get_settings().DATABASE_ECHO
            self.engine = create_async_engine(self.url, echo=echo, future=True)
            self.async_session = async_sessionmaker(
                self.engine, class_=AsyncSession, expire_on_commit=False
            )
            self._initialized = True

    def session(self) -> AsyncSession:
        """Open a new session; use as ``async with database.session() as s``"""
        self._initialize_engine()
        return self.async_session()

    async def create_tables(self, base) -> None:
        """Create the tables declared on ``base`` if they are missing"""
        self._initialize_engine()
        async with self.engine.begin() as conn:
            await conn.run_sync(base.metadata.create_all)

    async def close(self):
        """Close database connection"""
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self.async_session = None
            self._initialized = False
            logger = get_logger(__name__)
            logger.info("Database connection closed")
