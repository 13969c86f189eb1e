"""Database connection and ORM models."""

from .db_connection import Database, create_db_engine, create_session_factory
from .db_models import DBProviderCredential, DBTransferJob, TuneBridgeDBBase, init_db

__all__ = [
    "DBProviderCredential",
    "DBTransferJob",
    "Database",
    "TuneBridgeDBBase",
    "create_db_engine",
    "create_session_factory",
    "init_db",
]
