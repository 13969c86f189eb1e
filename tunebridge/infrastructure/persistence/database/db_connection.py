"""SQLAlchemy database configuration and connection management.

This module is responsible for:
- Engine creation and configuration
- Connection pooling
- Session management
- Transaction handling

There is no module-level engine: callers build a ``Database`` handle, call
``init_schema()`` when they need tables, pass the handle to repositories and
``dispose()`` it on shutdown.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from attrs import define, field
from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from tunebridge.config import get_logger, settings
from tunebridge.config.settings import DatabaseConfig

# Create module logger
logger = get_logger(__name__).bind(service="database")


def _is_memory_sqlite(db_url: str) -> bool:
    url = make_url(db_url)
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def create_db_engine(
    connection_string: str | None = None,
    config: DatabaseConfig | None = None,
) -> AsyncEngine:
    """Create async SQLAlchemy engine with connection pooling tuned for SQLite."""
    config = config or settings.database
    db_url = connection_string or config.url

    engine_kwargs: dict = {"echo": config.echo, "pool_pre_ping": True}
    if db_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": 30.0,  # seconds to wait on a locked database
        }
        if _is_memory_sqlite(db_url):
            # one shared connection, otherwise every connection gets its own database
            engine_kwargs["poolclass"] = StaticPool
        else:
            database = make_url(db_url).database
            if database:
                Path(database).parent.mkdir(parents=True, exist_ok=True)
            engine_kwargs.update(
                pool_size=config.pool_size,
                max_overflow=config.max_overflow,
                pool_timeout=config.pool_timeout,
                pool_recycle=config.pool_recycle,
            )
    else:
        engine_kwargs.update(
            pool_size=config.pool_size,
            max_overflow=config.max_overflow,
            pool_timeout=config.pool_timeout,
            pool_recycle=config.pool_recycle,
        )

    engine = create_async_engine(db_url, **engine_kwargs)

    if db_url.startswith("sqlite"):

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, _):  # pragma: no cover
            """Set SQLite PRAGMAs on connection creation."""
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA busy_timeout = 30000")
            cursor.execute("PRAGMA journal_mode = WAL")
            cursor.execute("PRAGMA synchronous = NORMAL")
            cursor.execute("PRAGMA foreign_keys = ON")
            cursor.close()

    logger.debug("Created database engine", url=make_url(db_url).render_as_string())
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory for the given engine."""
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,  # snapshots are mapped after commit
        autoflush=True,
    )


@define(slots=True)
class Database:
    """Engine plus session factory, passed explicitly to repositories."""

    url: str = field(factory=lambda: settings.database.url)
    config: DatabaseConfig = field(factory=lambda: settings.database)
    engine: AsyncEngine = field(init=False, repr=False)
    session_factory: async_sessionmaker[AsyncSession] = field(init=False, repr=False)

    def __attrs_post_init__(self) -> None:
        self.engine = create_db_engine(self.url, self.config)
        self.session_factory = create_session_factory(self.engine)

    async def init_schema(self) -> None:
        """Create all tables if they don't exist."""
        from tunebridge.infrastructure.persistence.database.db_models import init_db

        await init_db(self.engine)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """Session that commits on success and rolls back on any exception."""
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
