"""SQLAlchemy database models for the transfer job store.

Two tables:
- transfer_jobs: the queue and the only state shared between workers
- provider_credentials: per-user provider tokens written by the identity subsystem
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Text,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.ext.asyncio import AsyncAttrs, AsyncEngine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from tunebridge.config import get_logger

# Create module logger
logger = get_logger(__name__).bind(service="database")

# Define naming convention for constraints
convention = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",  # Index
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",  # Unique constraint
    "ck": "ck_%(table_name)s_%(constraint_name)s",  # Check constraint
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",  # Foreign key
    "pk": "pk_%(table_name)s",  # Primary key
}

# Create metadata with naming convention
metadata = MetaData(naming_convention=convention)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TuneBridgeDBBase(AsyncAttrs, DeclarativeBase):
    """Base class for all database models with timestamps."""

    metadata = metadata

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utc_now,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utc_now,
        onupdate=_utc_now,
        nullable=False,
    )


class DBTransferJob(TuneBridgeDBBase):
    """Persisted transfer job record."""

    __tablename__ = "transfer_jobs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)

    source_provider: Mapped[str] = mapped_column(String(32))
    source_playlist_id: Mapped[str] = mapped_column(String(255))
    target_provider: Mapped[str] = mapped_column(String(32))
    target_playlist_id: Mapped[str | None] = mapped_column(String(255))
    target_create_if_missing: Mapped[bool] = mapped_column(Boolean, default=True)
    target_name: Mapped[str | None] = mapped_column(String(255))
    options: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    status: Mapped[str] = mapped_column(String(16), default="queued")
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    transferred_tracks: Mapped[int] = mapped_column(Integer, default=0)
    total_tracks: Mapped[int | None] = mapped_column(Integer)
    meta: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    last_error: Mapped[str | None] = mapped_column(Text)

    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    locked_by: Mapped[str | None] = mapped_column(String(128))
    lock_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_transfer_jobs_status_run_at", "status", "run_at"),
        Index("ix_transfer_jobs_status_updated_at", "status", "updated_at"),
    )


class DBProviderCredential(TuneBridgeDBBase):
    """Per-user provider credential."""

    __tablename__ = "provider_credentials"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64))
    provider: Mapped[str] = mapped_column(String(32))
    access_token: Mapped[str] = mapped_column(Text)
    refresh_token: Mapped[str | None] = mapped_column(Text)
    provider_account_id: Mapped[str | None] = mapped_column(String(255))

    __table_args__ = (UniqueConstraint("user_id", "provider"),)


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database schema.

    Creates all tables if they don't exist.
    This is a safe operation that won't affect existing data.
    """
    try:
        async with engine.connect() as conn:
            existing_tables = await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).get_table_names()
            )
            if existing_tables:
                logger.debug(f"Found existing tables: {existing_tables}")

        # Create tables - SQLAlchemy will skip tables that already exist
        async with engine.begin() as conn:
            await conn.run_sync(TuneBridgeDBBase.metadata.create_all)

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise
    else:
        logger.info("Database schema initialization complete")
