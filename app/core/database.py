from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import get_database_settings


class Base(DeclarativeBase):
  """Declarative base for the ORM models."""


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _database_url() -> str | None:
  """Return the configured DSN rewritten for the asyncpg driver."""
  database_url = get_database_settings().pg_dsn
  if database_url and database_url.startswith(("postgresql://", "postgres://")):
    database_url = "postgresql+asyncpg://" + database_url.split("://", 1)[1]
  return database_url


def get_db_engine() -> AsyncEngine | None:
  """Return the shared async engine, or None when no DSN is configured."""
  global _engine
  settings = get_database_settings()
  database_url = _database_url()
  if _engine is None and database_url:
    _engine = create_async_engine(database_url, echo=settings.debug, pool_pre_ping=True, connect_args={"timeout": settings.pg_connect_timeout})
  return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession] | None:
  """Return the session factory bound to the shared engine."""
  global _session_factory
  if _session_factory is None:
    db_engine = get_db_engine()
    if db_engine is not None:
      _session_factory = async_sessionmaker(bind=db_engine, expire_on_commit=False, class_=AsyncSession)
  return _session_factory


async def create_schema() -> None:
  """Create missing tables; used for local runs without a migration step."""
  from app.schema import sql  # noqa: F401

  db_engine = get_db_engine()
  if db_engine is None:
    return
  async with db_engine.begin() as connection:
    await connection.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
  """Dispose the engine on shutdown so pooled connections close cleanly."""
  global _engine, _session_factory
  if _engine is not None:
    await _engine.dispose()
  _engine = None
  _session_factory = None
