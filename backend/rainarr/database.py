"""
Database engine, sessions and lifecycle for the single-file SQLite store.

Three writers share the file: the query ticker, the download-start poller
and request handlers. The pragmas below make that workable:

- WAL journal: readers (status pages, streaming lookups) never wait on the writer.
- busy_timeout: two writers touching the same torrent row queue up instead of
  failing with "database is locked".
- foreign_keys: deleting a torrent removes its torrent_contents rows.

NullPool is used because aiosqlite connections are bound to the thread that
opened them; each session gets a fresh connection.
"""
import sqlite3
from typing import AsyncIterator
from loguru import logger
from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from rainarr.config import settings
from rainarr.constants import SQLITE_BUSY_TIMEOUT_MS

engine = create_async_engine(settings.database_url, echo=settings.debug, poolclass=NullPool)

# Rows are read after commit by the background loops, so don't expire them
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

Base = declarative_base()

_PRAGMAS = (
    "PRAGMA foreign_keys=ON",
    "PRAGMA journal_mode=WAL",
    f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}",
    "PRAGMA synchronous=NORMAL",
)


@event.listens_for(Engine, "connect")
def apply_sqlite_pragmas(dbapi_conn, connection_record):
    """Run the connection pragmas on every new SQLite connection."""
    if not (isinstance(dbapi_conn, sqlite3.Connection) or "sqlite" in type(dbapi_conn).__module__):
        return
    cursor = dbapi_conn.cursor()
    for pragma in _PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request, committed on success."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Create missing tables."""
    import rainarr.models  # noqa: F401  (registers the tables on Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db():
    """Fold the WAL back into the main file and drop connections."""
    try:
        async with engine.begin() as conn:
            await conn.execute(text("PRAGMA wal_checkpoint(TRUNCATE)"))
        logger.debug("WAL checkpoint completed")
    except Exception as e:
        logger.warning(f"WAL checkpoint failed: {e}")
    await engine.dispose()
