"""SQLAlchemy implementations of the domain repository protocols."""

from .credentials import SqlCredentialStore
from .repo_decorator import db_operation
from .transfer_jobs import SqlTransferJobStore, TransferJobMapper

__all__ = [
    "SqlCredentialStore",
    "SqlTransferJobStore",
    "TransferJobMapper",
    "db_operation",
]
