"""TuneBridge domain layer - pure business logic with zero infrastructure dependencies."""

from . import entities, matching
from .entities import (
    JobStatus,
    MatchResult,
    SourcePlaylist,
    TransferJob,
    TransferPhase,
    TransferTrack,
    UnmatchedTrack,
)
from .errors import (
    AuthorizationError,
    InvalidTransferRequest,
    LockConflict,
    MalformedDataError,
    ProviderNotSupportedError,
    TransferError,
    UpstreamError,
)

__all__ = [
    # Modules
    "entities",
    "matching",
    # Key domain types
    "JobStatus",
    "MatchResult",
    "SourcePlaylist",
    "TransferJob",
    "TransferPhase",
    "TransferTrack",
    "UnmatchedTrack",
    # Errors
    "AuthorizationError",
    "InvalidTransferRequest",
    "LockConflict",
    "MalformedDataError",
    "ProviderNotSupportedError",
    "TransferError",
    "UpstreamError",
]
