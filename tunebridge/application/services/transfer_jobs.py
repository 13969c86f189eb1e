"""Job submission, status polling and cancellation.

This is the surface the HTTP layer (or the CLI) talks to. It validates a
whole submission before anything is enqueued, so a batch either enters the
queue completely or not at all.
"""

from collections.abc import Collection
from typing import Any

from attrs import define, field

from tunebridge.config import get_logger
from tunebridge.domain.entities import (
    TransferJob,
    TransferSource,
    TransferStatus,
    TransferTarget,
)
from tunebridge.domain.errors import InvalidTransferRequest
from tunebridge.domain.repositories import TransferJobStoreProtocol

logger = get_logger(__name__).bind(service="transfer_jobs")


@define(frozen=True, slots=True)
class TransferRequest:
    """One playlist transfer as submitted by a client.

    Recognized options:
        target_name: Name for a newly created destination playlist
        create_if_missing: Create the destination when no id is given (default True)
    """

    source_playlist_id: str
    source_provider: str
    target_provider: str
    target_playlist_id: str | None = None
    options: dict[str, Any] = field(factory=dict)

    def to_job(self, user_id: str) -> TransferJob:
        return TransferJob(
            user_id=user_id,
            source=TransferSource(
                provider=self.source_provider, playlist_id=self.source_playlist_id
            ),
            target=TransferTarget(
                provider=self.target_provider,
                playlist_id=self.target_playlist_id or None,
                create_if_missing=bool(self.options.get("create_if_missing", True)),
                name=self.options.get("target_name"),
            ),
            options=dict(self.options),
        )


class TransferJobService:
    """Submits transfer jobs and reports their status."""

    def __init__(
        self,
        store: TransferJobStoreProtocol,
        supported_providers: Collection[str],
    ) -> None:
        self.store = store
        self.supported_providers = frozenset(supported_providers)

    def validate(self, request: TransferRequest) -> None:
        """Raise InvalidTransferRequest if the request cannot be executed."""
        if not request.source_playlist_id or not request.source_playlist_id.strip():
            raise InvalidTransferRequest("Source playlist id is required")
        for role, provider in (
            ("source", request.source_provider),
            ("target", request.target_provider),
        ):
            if provider not in self.supported_providers:
                raise InvalidTransferRequest(
                    f"Unsupported {role} provider '{provider}'", provider=provider
                )
        if not request.target_playlist_id and not request.options.get(
            "create_if_missing", True
        ):
            raise InvalidTransferRequest(
                "Target playlist id is required when create_if_missing is false",
                provider=request.target_provider,
            )

    async def submit(self, user_id: str, requests: list[TransferRequest]) -> list[str]:
        """Validate every request, then enqueue one job per request.

        Returns:
            Job ids in request order
        """
        if not user_id:
            raise InvalidTransferRequest("User id is required")
        if not requests:
            raise InvalidTransferRequest("At least one transfer is required")
        for request in requests:
            self.validate(request)

        job_ids = [await self.store.enqueue(request.to_job(user_id)) for request in requests]
        logger.info(f"Submitted {len(job_ids)} transfer jobs", user_id=user_id)
        return job_ids

    async def status(self, job_id: str) -> TransferStatus | None:
        job = await self.store.get(job_id)
        return TransferStatus.from_job(job) if job else None

    async def cancel(self, job_id: str) -> TransferStatus:
        """Cancel a job that has not started processing."""
        job = await self.store.cancel(job_id)
        logger.info("Canceled transfer job", job_id=job_id)
        return TransferStatus.from_job(job)
