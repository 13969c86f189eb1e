"""SQL-backed transfer job store.

The store is the queue and the lease manager at the same time. Claiming is a
single conditional UPDATE so two workers can never both move a job to
processing; every later mutation is guarded by ``locked_by`` so a worker that
lost its lease cannot overwrite the new owner's progress.
"""

from datetime import datetime, timedelta
from typing import Any

from attrs import define
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tunebridge.config import get_logger
from tunebridge.domain.entities import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    JobStatus,
    TransferJob,
    TransferSource,
    TransferTarget,
    can_transition,
    ensure_utc,
    utc_now,
)
from tunebridge.domain.errors import InvalidTransferRequest, LockConflict
from tunebridge.infrastructure.persistence.database.db_connection import Database
from tunebridge.infrastructure.persistence.database.db_models import DBTransferJob
from tunebridge.infrastructure.persistence.repositories.repo_decorator import (
    db_operation,
)

logger = get_logger(__name__).bind(service="job_store")


def statuses_leading_to(status: JobStatus) -> list[str]:
    """Persisted statuses from which the life-cycle allows moving to ``status``."""
    return [
        str(current)
        for current, allowed in ALLOWED_TRANSITIONS.items()
        if status in allowed
    ]


@define(frozen=True, slots=True)
class TransferJobMapper:
    """Maps between DBTransferJob rows and TransferJob snapshots."""

    @staticmethod
    def to_domain(db_model: DBTransferJob) -> TransferJob:
        return TransferJob(
            id=db_model.id,
            user_id=db_model.user_id,
            source=TransferSource(
                provider=db_model.source_provider,
                playlist_id=db_model.source_playlist_id,
            ),
            target=TransferTarget(
                provider=db_model.target_provider,
                playlist_id=db_model.target_playlist_id,
                create_if_missing=db_model.target_create_if_missing,
                name=db_model.target_name,
            ),
            options=dict(db_model.options or {}),
            status=db_model.status,
            attempts=db_model.attempts,
            transferred_tracks=db_model.transferred_tracks,
            total_tracks=db_model.total_tracks,
            meta=dict(db_model.meta or {}),
            last_error=db_model.last_error,
            run_at=ensure_utc(db_model.run_at),
            locked_by=db_model.locked_by,
            lock_expires_at=ensure_utc(db_model.lock_expires_at),
            created_at=ensure_utc(db_model.created_at),
            updated_at=ensure_utc(db_model.updated_at),
        )

    @staticmethod
    def to_db(job: TransferJob) -> DBTransferJob:
        return DBTransferJob(
            id=job.id,
            user_id=job.user_id,
            source_provider=job.source.provider,
            source_playlist_id=job.source.playlist_id,
            target_provider=job.target.provider,
            target_playlist_id=job.target.playlist_id,
            target_create_if_missing=job.target.create_if_missing,
            target_name=job.target.name,
            options=dict(job.options),
            status=str(job.status),
            attempts=job.attempts,
            transferred_tracks=job.transferred_tracks,
            total_tracks=job.total_tracks,
            meta=dict(job.meta),
            last_error=job.last_error,
            run_at=job.run_at,
            locked_by=job.locked_by,
            lock_expires_at=job.lock_expires_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class SqlTransferJobStore:
    """TransferJobStoreProtocol implementation over SQLAlchemy async sessions."""

    def __init__(self, database: Database) -> None:
        self.database = database
        self.mapper = TransferJobMapper()

    async def _owned(
        self, session: AsyncSession, job_id: str, worker_id: str
    ) -> DBTransferJob:
        """Load a processing job owned by worker_id, or raise LockConflict."""
        row = await session.get(DBTransferJob, job_id)
        if (
            row is None
            or row.status != JobStatus.PROCESSING
            or row.locked_by != worker_id
        ):
            raise LockConflict(
                f"Worker {worker_id} does not hold the lease on job {job_id}",
                operation="lease_check",
            )
        return row

    @staticmethod
    def _release(row: DBTransferJob, status: JobStatus, now: datetime) -> None:
        current = JobStatus(row.status)
        if not can_transition(current, status):
            raise InvalidTransferRequest(
                f"Job {row.id} cannot move from {current} to {status}",
                operation="release",
            )
        row.status = str(status)
        row.locked_by = None
        row.lock_expires_at = None
        row.updated_at = now

    @db_operation("enqueue_job")
    async def enqueue(self, job: TransferJob) -> str:
        now = utc_now()
        row = self.mapper.to_db(job)
        row.status = str(JobStatus.QUEUED)
        row.attempts = 0
        row.run_at = now
        row.locked_by = None
        row.lock_expires_at = None
        row.created_at = now
        row.updated_at = now
        async with self.database.session() as session:
            session.add(row)
        logger.info("Enqueued transfer job", job_id=job.id, user_id=job.user_id)
        return job.id

    @db_operation("get_job")
    async def get(self, job_id: str) -> TransferJob | None:
        async with self.database.session() as session:
            row = await session.get(DBTransferJob, job_id)
            return self.mapper.to_domain(row) if row else None

    @db_operation("find_due_jobs")
    async def find_due(self, limit: int, now: datetime | None = None) -> list[TransferJob]:
        now = now or utc_now()
        stmt = (
            select(DBTransferJob)
            .where(
                DBTransferJob.status == str(JobStatus.QUEUED),
                DBTransferJob.run_at <= now,
                or_(
                    DBTransferJob.locked_by.is_(None),
                    DBTransferJob.lock_expires_at < now,
                ),
            )
            .order_by(DBTransferJob.run_at, DBTransferJob.created_at)
            .limit(limit)
        )
        async with self.database.session() as session:
            rows = (await session.scalars(stmt)).all()
            return [self.mapper.to_domain(row) for row in rows]

    @db_operation("claim_job")
    async def claim(
        self,
        job_id: str,
        worker_id: str,
        lease_seconds: int,
        now: datetime | None = None,
    ) -> TransferJob:
        now = now or utc_now()
        stmt = (
            update(DBTransferJob)
            .where(
                DBTransferJob.id == job_id,
                DBTransferJob.status.in_(statuses_leading_to(JobStatus.PROCESSING)),
                DBTransferJob.run_at <= now,
                or_(
                    DBTransferJob.locked_by.is_(None),
                    DBTransferJob.lock_expires_at < now,
                ),
            )
            .values(
                status=str(JobStatus.PROCESSING),
                locked_by=worker_id,
                lock_expires_at=now + timedelta(seconds=lease_seconds),
                attempts=DBTransferJob.attempts + 1,
                transferred_tracks=0,
                total_tracks=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
            if result.rowcount != 1:
                raise LockConflict(
                    f"Job {job_id} is not claimable by {worker_id}",
                    operation="claim",
                )
            row = await session.get(DBTransferJob, job_id, populate_existing=True)
            job = self.mapper.to_domain(row)

        logger.debug("Claimed job", job_id=job_id, worker_id=worker_id, attempt=job.attempts)
        return job

    @db_operation("renew_lease")
    async def renew_lease(self, job_id: str, worker_id: str, lease_seconds: int) -> None:
        now = utc_now()
        stmt = (
            update(DBTransferJob)
            .where(
                DBTransferJob.id == job_id,
                DBTransferJob.status == str(JobStatus.PROCESSING),
                DBTransferJob.locked_by == worker_id,
            )
            .values(
                lock_expires_at=now + timedelta(seconds=lease_seconds),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
            if result.rowcount != 1:
                raise LockConflict(
                    f"Worker {worker_id} lost the lease on job {job_id}",
                    operation="renew_lease",
                )

    @db_operation("update_progress")
    async def update_progress(
        self,
        job_id: str,
        worker_id: str,
        *,
        transferred_tracks: int | None = None,
        total_tracks: int | None = None,
        meta: dict[str, Any] | None = None,
        last_error: str | None = None,
    ) -> TransferJob:
        async with self.database.session() as session:
            row = await self._owned(session, job_id, worker_id)
            if transferred_tracks is not None:
                row.transferred_tracks = transferred_tracks
            if total_tracks is not None:
                row.total_tracks = total_tracks
            if meta:
                row.meta = {**(row.meta or {}), **meta}
            if last_error is not None:
                row.last_error = last_error
            row.updated_at = utc_now()
            await session.flush()
            return self.mapper.to_domain(row)

    @db_operation("mark_succeeded")
    async def mark_succeeded(
        self,
        job_id: str,
        worker_id: str,
        *,
        transferred_tracks: int | None = None,
        meta: dict[str, Any] | None = None,
    ) -> TransferJob:
        async with self.database.session() as session:
            row = await self._owned(session, job_id, worker_id)
            if transferred_tracks is not None:
                row.transferred_tracks = transferred_tracks
            if meta:
                row.meta = {**(row.meta or {}), **meta}
            row.last_error = None
            self._release(row, JobStatus.SUCCEEDED, utc_now())
            await session.flush()
            job = self.mapper.to_domain(row)

        logger.info("Job succeeded", job_id=job_id, transferred=job.transferred_tracks)
        return job

    @db_operation("mark_failed")
    async def mark_failed(
        self,
        job_id: str,
        worker_id: str,
        error: str,
        meta: dict[str, Any] | None = None,
    ) -> TransferJob:
        async with self.database.session() as session:
            row = await self._owned(session, job_id, worker_id)
            if meta:
                row.meta = {**(row.meta or {}), **meta}
            row.last_error = error
            self._release(row, JobStatus.FAILED, utc_now())
            await session.flush()
            job = self.mapper.to_domain(row)

        logger.warning("Job failed", job_id=job_id, attempts=job.attempts)
        return job

    @db_operation("requeue_job")
    async def requeue(
        self,
        job_id: str,
        worker_id: str,
        run_at: datetime,
        error: str | None = None,
    ) -> TransferJob:
        async with self.database.session() as session:
            row = await self._owned(session, job_id, worker_id)
            row.run_at = run_at
            if error is not None:
                row.last_error = error
            self._release(row, JobStatus.QUEUED, utc_now())
            await session.flush()
            return self.mapper.to_domain(row)

    @db_operation("cancel_job")
    async def cancel(self, job_id: str) -> TransferJob:
        now = utc_now()
        stmt = (
            update(DBTransferJob)
            .where(
                DBTransferJob.id == job_id,
                DBTransferJob.status.in_(statuses_leading_to(JobStatus.CANCELED)),
            )
            .values(
                status=str(JobStatus.CANCELED),
                locked_by=None,
                lock_expires_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
            row = await session.get(DBTransferJob, job_id, populate_existing=True)
            if row is None:
                raise InvalidTransferRequest(f"Job {job_id} does not exist", operation="cancel")
            if result.rowcount != 1:
                raise InvalidTransferRequest(
                    f"Job {job_id} is {row.status} and can no longer be canceled",
                    operation="cancel",
                )
            return self.mapper.to_domain(row)

    @db_operation("requeue_stale_jobs")
    async def requeue_stale(
        self, threshold_seconds: int, now: datetime | None = None
    ) -> int:
        now = now or utc_now()
        cutoff = now - timedelta(seconds=threshold_seconds)
        stmt = (
            update(DBTransferJob)
            .where(
                DBTransferJob.status.in_(statuses_leading_to(JobStatus.QUEUED)),
                DBTransferJob.updated_at < cutoff,
            )
            .values(
                status=str(JobStatus.QUEUED),
                locked_by=None,
                lock_expires_at=None,
                run_at=now,
                last_error="Worker stopped renewing its lease; job requeued",
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
            count = result.rowcount or 0

        if count:
            logger.warning(f"Requeued {count} stale jobs", threshold_seconds=threshold_seconds)
        return count

    @db_operation("prune_jobs")
    async def prune(self, retention_days: int, now: datetime | None = None) -> int:
        now = now or utc_now()
        cutoff = now - timedelta(days=retention_days)
        stmt = (
            delete(DBTransferJob)
            .where(
                DBTransferJob.status.in_([str(s) for s in TERMINAL_STATUSES]),
                DBTransferJob.updated_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
            count = result.rowcount or 0

        if count:
            logger.info(f"Pruned {count} finished jobs", retention_days=retention_days)
        return count
