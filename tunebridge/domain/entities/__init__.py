"""Core domain entities representing transfer concepts."""

from .job import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    JobStatus,
    ProviderCredential,
    TransferJob,
    TransferPhase,
    TransferProgress,
    TransferSource,
    TransferStatus,
    TransferTarget,
    can_transition,
)
from .shared import chunked, ensure_utc, utc_now
from .track import (
    MatchKey,
    MatchResult,
    PlaylistResolution,
    SourcePlaylist,
    TransferTrack,
    UnmatchedTrack,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    # Job entities
    "JobStatus",
    "ProviderCredential",
    "TransferJob",
    "TransferPhase",
    "TransferProgress",
    "TransferSource",
    "TransferStatus",
    "TransferTarget",
    "can_transition",
    # Track entities
    "MatchKey",
    "MatchResult",
    "PlaylistResolution",
    "SourcePlaylist",
    "TransferTrack",
    "UnmatchedTrack",
    # Shared utilities
    "chunked",
    "ensure_utc",
    "utc_now",
]
