"""Database engine, session factory, and the declarative base.

All tables share a single DeclarativeBase. Work is scoped by
work center columns rather than schemas, so one session dependency
is enough:
  - get_db()  → request-scoped session, committed on success
"""

from datetime import datetime, timezone

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# ── Base class ──────────────────────────────────────────────

class Base(DeclarativeBase):
    pass


# ── Helpers ─────────────────────────────────────────────────

def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def dialect_insert(db: AsyncSession):
    """Return the dialect-specific ``insert`` so ON CONFLICT clauses compile.

    Production runs on PostgreSQL; the test suite runs on SQLite. Both
    dialects expose ``on_conflict_do_nothing(index_elements=...)``.
    """
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


# ── Session dependency ──────────────────────────────────────

async def get_db() -> AsyncSession:
    """Yield a session, committing on success and rolling back on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
