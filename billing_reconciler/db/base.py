"""Declarative base plus the process-wide async engine and session factory."""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from billing_reconciler.core.config import get_settings


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(url: str, echo: bool) -> dict:
    options = {"echo": echo}
    # SQLite (tests, local runs) has no server connection to go stale
    if make_url(url).get_backend_name() != "sqlite":
        options["pool_pre_ping"] = True
    return options


async def init_db(url: str | None = None, create_tables: bool = True) -> None:
    """Create the engine and session factory once per process.

    ``create_tables`` runs ``create_all`` for local and test databases;
    production schemas come from the alembic migrations.
    """
    global _engine, _session_factory

    if _engine is not None:
        return

    settings = get_settings()
    db_url = url or settings.database_url

    _engine = create_async_engine(db_url, **_engine_options(db_url, settings.debug))
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)

    if create_tables:
        # Registers every table on Base.metadata
        import billing_reconciler.db.models  # noqa: F401

        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory; RuntimeError before init_db()."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory
