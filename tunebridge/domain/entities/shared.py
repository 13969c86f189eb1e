"""Shared utilities and helper functions for domain entities.

Pure utility functions with zero external dependencies.
"""

from datetime import UTC, datetime
from typing import TypeVar

T = TypeVar("T")


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure datetime is timezone-aware with UTC."""
    if dt is None:
        return None
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def chunked(items: list[T], size: int) -> list[list[T]]:
    """Split items into consecutive chunks of at most size elements."""
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    return [items[i : i + size] for i in range(0, len(items), size)]
