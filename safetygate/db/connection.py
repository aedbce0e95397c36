"""
Database Connection Manager
===========================

Handles the async connection to the SQLite database that stores
enforcement sessions.
"""

from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine

from safetygate.db.models import Base

DB_FILENAME = "enforcement.db"

# Global session maker
_async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None
_engine: Optional[AsyncEngine] = None


async def init_db(data_dir: Optional[Path] = None, db_url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    """
    Initialize the database connection and create tables if they don't exist.

    Args:
        data_dir: Directory for enforcement.db (created if missing)
        db_url: Full SQLAlchemy URL; overrides data_dir when given

    Returns:
        The configured async session maker
    """
    global _async_session_maker, _engine

    if db_url is None:
        db_dir = Path(data_dir or ".safetygate-data")
        db_dir.mkdir(parents=True, exist_ok=True)
        db_url = f"sqlite+aiosqlite:///{db_dir / DB_FILENAME}"

    _engine = create_async_engine(db_url, echo=False)

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    _async_session_maker = async_sessionmaker(_engine, expire_on_commit=False)

    return _async_session_maker


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get the configured session maker."""
    if _async_session_maker is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _async_session_maker


async def dispose_db() -> None:
    """Close pooled connections (tests and shutdown)."""
    global _async_session_maker, _engine
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _async_session_maker = None
