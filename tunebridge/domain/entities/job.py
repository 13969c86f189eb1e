"""Transfer job entities and the job life-cycle rules.

A TransferJob is the only state shared between workers. Its status follows a
small state machine; the phase inside ``meta`` is the finer-grained progress
label shown to polling clients while a job is processing.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any
import uuid

from attrs import define, field

from .shared import utc_now


class JobStatus(StrEnum):
    """Persisted job status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELED})

# processing -> queued covers both retry-with-backoff and stale-lease recovery
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.CANCELED}),
    JobStatus.PROCESSING: frozenset({
        JobStatus.SUCCEEDED,
        JobStatus.FAILED,
        JobStatus.QUEUED,
    }),
    JobStatus.SUCCEEDED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELED: frozenset(),
}


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    """Check whether a status change is allowed by the job life-cycle."""
    return new in ALLOWED_TRANSITIONS[current]


class TransferPhase(StrEnum):
    """Progress label surfaced while a job is processing."""

    INITIALIZING = "initializing"
    FETCHING_SOURCE = "fetching-source-playlist"
    MATCHING = "matching-tracks"
    PREPARING_DESTINATION = "preparing-destination"
    ADDING_TRACKS = "adding-tracks"
    COMPLETE = "complete"
    ERROR = "error"


@define(frozen=True, slots=True)
class ProviderCredential:
    """Per-user, per-provider access token. Read-only for adapters."""

    user_id: str
    provider: str
    access_token: str = field(repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    provider_account_id: str | None = None


@define(frozen=True, slots=True)
class TransferSource:
    provider: str
    playlist_id: str


@define(frozen=True, slots=True)
class TransferTarget:
    provider: str
    playlist_id: str | None = None
    create_if_missing: bool = True
    name: str | None = None


@define(frozen=True, slots=True)
class TransferProgress:
    """Track counts and phase reported to polling clients."""

    transferred_tracks: int = 0
    total_tracks: int | None = None
    phase: str | None = None


@define(frozen=True, slots=True)
class TransferJob:
    """Immutable snapshot of a persisted transfer job."""

    user_id: str
    source: TransferSource
    target: TransferTarget
    id: str = field(factory=lambda: uuid.uuid4().hex)
    options: dict[str, Any] = field(factory=dict)
    status: JobStatus = field(default=JobStatus.QUEUED, converter=JobStatus)
    attempts: int = 0
    transferred_tracks: int = 0
    total_tracks: int | None = None
    meta: dict[str, Any] = field(factory=dict)
    last_error: str | None = None
    run_at: datetime = field(factory=utc_now)
    locked_by: str | None = None
    lock_expires_at: datetime | None = None
    created_at: datetime = field(factory=utc_now)
    updated_at: datetime = field(factory=utc_now)

    @property
    def progress(self) -> TransferProgress:
        return TransferProgress(
            transferred_tracks=self.transferred_tracks,
            total_tracks=self.total_tracks,
            phase=self.meta.get("phase"),
        )


@define(frozen=True, slots=True)
class TransferStatus:
    """Read model returned to polling clients."""

    id: str
    status: JobStatus
    progress: TransferProgress
    last_error: str | None
    updated_at: datetime

    @classmethod
    def from_job(cls, job: TransferJob) -> "TransferStatus":
        return cls(
            id=job.id,
            status=job.status,
            progress=job.progress,
            last_error=job.last_error,
            updated_at=job.updated_at,
        )

    def as_dict(self) -> dict[str, Any]:
        """Serialize with the stable field names polling clients rely on."""
        return {
            "id": self.id,
            "status": str(self.status),
            "progress": {
                "transferredTracks": self.progress.transferred_tracks,
                "totalTracks": self.progress.total_tracks,
                "phase": self.progress.phase,
            },
            "lastError": self.last_error,
            "updatedAt": self.updated_at.isoformat(),
        }
