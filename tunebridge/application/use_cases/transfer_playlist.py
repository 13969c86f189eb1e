"""Transfer playlist use case: the per-job state machine.

Drives one claimed job through its phases:

    initializing -> fetching-source-playlist -> matching-tracks
        -> preparing-destination -> adding-tracks -> complete

and checkpoints progress into the job record after every phase and every
write batch. Any failure is recorded on the job (phase=error, meta.error,
last_error) before it is re-raised; whether the job is retried or failed is
the scheduler's decision.
"""

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from attrs import define, field

from tunebridge.application.services.track_reconciler import (
    ReconciliationResult,
    TrackReconciler,
)
from tunebridge.config import get_logger, settings
from tunebridge.config.settings import MatchingConfig
from tunebridge.domain.entities import (
    ProviderCredential,
    SourcePlaylist,
    TransferJob,
    TransferPhase,
    chunked,
)
from tunebridge.domain.errors import InvalidTransferRequest, LockConflict, TransferError
from tunebridge.domain.repositories import (
    CredentialStoreProtocol,
    TransferJobStoreProtocol,
)

if TYPE_CHECKING:
    from tunebridge.infrastructure.connectors.protocols import TransferProviderProtocol

logger = get_logger(__name__).bind(service="transfer")

ProviderFactory = Callable[[str, ProviderCredential | None], "TransferProviderProtocol"]


@define(frozen=True, slots=True)
class TransferPlaylistCommand:
    """A claimed job plus the worker holding its lease."""

    job: TransferJob
    worker_id: str


@define(frozen=True, slots=True)
class TransferOutcome:
    job_id: str
    transferred_tracks: int
    total_tracks: int
    summary: dict[str, Any]


@define(slots=True)
class JobProgressReporter:
    """Lease-guarded progress checkpoints for one job."""

    store: TransferJobStoreProtocol
    job_id: str
    worker_id: str

    async def phase(self, phase: TransferPhase, **fields: Any) -> None:
        meta = {"phase": str(phase), **fields.pop("meta", {})}
        await self.store.update_progress(
            self.job_id, self.worker_id, meta=meta, **fields
        )
        logger.debug(f"Job entered phase {phase}", job_id=self.job_id)

    async def update(self, **fields: Any) -> None:
        await self.store.update_progress(self.job_id, self.worker_id, **fields)


def _default_provider_factory() -> ProviderFactory:
    from tunebridge.infrastructure.connectors import create_transfer_provider

    return create_transfer_provider


def _error_meta(error: Exception) -> dict[str, Any]:
    if isinstance(error, TransferError):
        details: dict[str, Any] = error.context()
    else:
        details = {"error_type": type(error).__name__}
    return {"message": str(error), **details}


@define(slots=True)
class TransferPlaylistUseCase:
    """Executes a playlist transfer for one claimed job."""

    store: TransferJobStoreProtocol
    credentials: CredentialStoreProtocol
    provider_factory: ProviderFactory = field(factory=_default_provider_factory)
    matching: MatchingConfig = field(factory=lambda: settings.matching)

    async def execute(self, command: TransferPlaylistCommand) -> TransferOutcome:
        """Run the transfer and mark the job succeeded.

        Raises:
            LockConflict: The worker lost its lease; the job record is untouched
            TransferError: Any other failure, after it was recorded on the job
        """
        job = command.job
        progress = JobProgressReporter(self.store, job.id, command.worker_id)
        try:
            return await self._run(job, progress)
        except LockConflict:
            raise
        except Exception as e:
            logger.warning(
                "Transfer failed",
                job_id=job.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            try:
                await progress.phase(
                    TransferPhase.ERROR,
                    meta={"error": _error_meta(e)},
                    last_error=str(e) or type(e).__name__,
                )
            except LockConflict:
                logger.warning("Lease lost while recording failure", job_id=job.id)
            raise

    async def _run(self, job: TransferJob, progress: JobProgressReporter) -> TransferOutcome:
        await progress.phase(TransferPhase.INITIALIZING, meta={"error": None})

        if not job.target.playlist_id and not job.target.create_if_missing:
            raise InvalidTransferRequest(
                "Target playlist id is required when create_if_missing is false",
                provider=job.target.provider,
                operation="validate_target",
            )

        source_credential = await self.credentials.get_credential(
            job.user_id, job.source.provider
        )
        target_credential = await self.credentials.get_credential(
            job.user_id, job.target.provider
        )
        source = self.provider_factory(job.source.provider, source_credential)
        try:
            target = self.provider_factory(job.target.provider, target_credential)
        except Exception:
            await source.aclose()
            raise

        try:
            return await self._transfer(job, source, target, progress)
        finally:
            await source.aclose()
            await target.aclose()

    async def _transfer(
        self,
        job: TransferJob,
        source: "TransferProviderProtocol",
        target: "TransferProviderProtocol",
        progress: JobProgressReporter,
    ) -> TransferOutcome:
        await progress.phase(TransferPhase.FETCHING_SOURCE)
        playlist = await source.get_playlist(job.source.playlist_id)
        total = len(playlist.tracks)
        await progress.update(
            total_tracks=total,
            meta={
                "source": {
                    "provider": job.source.provider,
                    "playlist_id": playlist.id,
                    "playlist_name": playlist.name,
                },
                "total_tracks": total,
            },
        )
        logger.info(
            f"Fetched source playlist with {total} tracks",
            job_id=job.id,
            source=job.source.provider,
        )

        await progress.phase(TransferPhase.MATCHING)
        reconciliation = await TrackReconciler(self.matching).reconcile(
            playlist.tracks, target, job.source.provider
        )
        await progress.update(meta=self._matching_meta(playlist, reconciliation))

        await progress.phase(TransferPhase.PREPARING_DESTINATION)
        resolution = await target.ensure_playlist(
            job.target.playlist_id,
            job.target.name or playlist.name,
            description=playlist.description,
            public=playlist.public,
        )
        await progress.update(
            meta={
                "target": {
                    "provider": job.target.provider,
                    "playlist_id": resolution.playlist_id,
                    "playlist_name": resolution.name,
                    "created": resolution.created,
                }
            }
        )

        await progress.phase(TransferPhase.ADDING_TRACKS)
        track_ids = reconciliation.track_ids
        transferred = 0
        added = 0
        for batch in chunked(track_ids, max(1, target.add_batch_size)):
            transferred += len(batch)
            # destination must hold the whole prefix; tracks already written are skipped
            added += await target.add_tracks(
                resolution.playlist_id, track_ids[:transferred]
            )
            await progress.update(
                transferred_tracks=transferred, meta={"added": added}
            )

        summary = {
            "source_playlist": playlist.name,
            "target_playlist_id": resolution.playlist_id,
            "target_playlist_name": resolution.name,
            "created": resolution.created,
            "total_tracks": total,
            "matched": reconciliation.stats.matched,
            "unmatched": reconciliation.stats.unmatched,
            "transferred": transferred,
            "added": added,
        }
        await self.store.mark_succeeded(
            job.id,
            progress.worker_id,
            transferred_tracks=transferred,
            meta={"phase": str(TransferPhase.COMPLETE), "added": added, "summary": summary},
        )
        logger.info(
            f"Transferred {transferred}/{total} tracks",
            job_id=job.id,
            target=job.target.provider,
            unmatched=reconciliation.stats.unmatched,
        )
        return TransferOutcome(
            job_id=job.id,
            transferred_tracks=transferred,
            total_tracks=total,
            summary=summary,
        )

    def _matching_meta(
        self, playlist: SourcePlaylist, reconciliation: ReconciliationResult
    ) -> dict[str, Any]:
        sample_size = self.matching.unmatched_sample_size
        missing_isrc = [
            {"position": position, "name": track.name, "artists": list(track.artists)}
            for position, track in enumerate(playlist.tracks)
            if not track.isrc
        ]
        return {
            "matching": reconciliation.stats.as_dict(),
            "unmatched": [gap.as_dict() for gap in reconciliation.unmatched[:sample_size]],
            "missing_isrc": missing_isrc[:sample_size],
        }
