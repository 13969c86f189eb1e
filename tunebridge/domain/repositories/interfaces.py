"""Domain repository interfaces following Clean Architecture principles.

These interfaces define the contracts for job and credential storage without
depending on infrastructure implementations. The scheduler, orchestrator and
job service only ever talk to these protocols.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from tunebridge.domain.entities import ProviderCredential, TransferJob


class TransferJobStoreProtocol(Protocol):
    """Persistent queue of transfer jobs with lease-based ownership.

    Every mutation that happens while a job is processing is guarded by the
    lease owner: a worker that lost its lease gets ``LockConflict`` instead of
    silently overwriting another worker's progress.
    """

    async def enqueue(self, job: "TransferJob") -> str:
        """Persist a new job as queued and return its id."""
        ...

    async def get(self, job_id: str) -> "TransferJob | None":
        """Fetch a job snapshot by id."""
        ...

    async def find_due(
        self, limit: int, now: datetime | None = None
    ) -> list["TransferJob"]:
        """Queued jobs whose run_at has passed and whose lease is free or expired."""
        ...

    async def claim(
        self,
        job_id: str,
        worker_id: str,
        lease_seconds: int,
        now: datetime | None = None,
    ) -> "TransferJob":
        """Atomically move a due job to processing under worker_id's lease.

        Raises:
            LockConflict: Another worker holds the job, or it is no longer due.
        """
        ...

    async def renew_lease(
        self, job_id: str, worker_id: str, lease_seconds: int
    ) -> None:
        """Extend the lease held by worker_id."""
        ...

    async def update_progress(
        self,
        job_id: str,
        worker_id: str,
        *,
        transferred_tracks: int | None = None,
        total_tracks: int | None = None,
        meta: dict[str, Any] | None = None,
        last_error: str | None = None,
    ) -> "TransferJob":
        """Checkpoint progress; ``meta`` is merged key-by-key into stored meta."""
        ...

    async def mark_succeeded(
        self,
        job_id: str,
        worker_id: str,
        *,
        transferred_tracks: int | None = None,
        meta: dict[str, Any] | None = None,
    ) -> "TransferJob":
        ...

    async def mark_failed(
        self,
        job_id: str,
        worker_id: str,
        error: str,
        meta: dict[str, Any] | None = None,
    ) -> "TransferJob":
        ...

    async def requeue(
        self,
        job_id: str,
        worker_id: str,
        run_at: datetime,
        error: str | None = None,
    ) -> "TransferJob":
        """Return a processing job to the queue for a later retry."""
        ...

    async def cancel(self, job_id: str) -> "TransferJob":
        """Cancel a job that has not been dispatched yet."""
        ...

    async def requeue_stale(
        self, threshold_seconds: int, now: datetime | None = None
    ) -> int:
        """Reset processing jobs with no heartbeat since the threshold."""
        ...

    async def prune(self, retention_days: int, now: datetime | None = None) -> int:
        """Delete terminal jobs older than the retention window."""
        ...


class CredentialStoreProtocol(Protocol):
    """Read access to per-user provider credentials."""

    async def get_credential(
        self, user_id: str, provider: str
    ) -> "ProviderCredential | None":
        ...

    async def save_credential(self, credential: "ProviderCredential") -> None:
        ...
