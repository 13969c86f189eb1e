"""Asyncio scheduler that dispatches queued transfer jobs.

One scheduler instance is one worker. It polls the job store for due jobs,
claims them under a lease, and runs up to ``scheduler.concurrency`` transfers
at once. While a transfer runs, a heartbeat renews its lease; when it fails,
the retry policy decides between requeueing with backoff and failing the job.
A separate maintenance loop recovers stale jobs and prunes finished ones.
"""

import asyncio
import contextlib
from datetime import timedelta
import os
import socket
from typing import Any, Protocol
import uuid

import backoff
from attrs import define

from tunebridge.application.use_cases.transfer_playlist import TransferPlaylistCommand
from tunebridge.config import get_logger, settings
from tunebridge.config.settings import SchedulerConfig
from tunebridge.domain.entities import TransferJob, TransferPhase, utc_now
from tunebridge.domain.errors import FATAL_ERRORS, LockConflict, UpstreamError
from tunebridge.domain.repositories import TransferJobStoreProtocol

logger = get_logger(__name__).bind(service="scheduler")


class TransferRunner(Protocol):
    async def execute(self, command: TransferPlaylistCommand) -> Any: ...


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}"


@define(frozen=True, slots=True)
class RetryDecision:
    retry: bool
    delay: float = 0.0
    reason: str = ""


@define(frozen=True, slots=True)
class RetryPolicy:
    """Decides whether a failed job is requeued and after how long.

    Delays follow ``backoff.expo``: base_delay, 2 * base_delay, 4 * base_delay ...
    capped at max_delay.
    """

    max_attempts: int = 3
    base_delay: float = 30.0
    max_delay: float = 600.0
    retry_client_errors: bool = False

    @classmethod
    def from_config(cls, config: SchedulerConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            retry_client_errors=config.retry_client_errors,
        )

    def is_fatal(self, error: BaseException) -> bool:
        if isinstance(error, FATAL_ERRORS):
            return True
        return (
            isinstance(error, UpstreamError)
            and error.is_client_error
            and not self.retry_client_errors
        )

    def delay_for(self, attempts: int) -> float:
        """Backoff delay before the attempt after ``attempts`` tries."""
        delays = backoff.expo(factor=self.base_delay, max_value=self.max_delay)
        next(delays)  # backoff generators yield once before the first value
        delay = next(delays)
        for _ in range(max(0, attempts - 1)):
            delay = next(delays)
        return float(delay)

    def decide(self, error: BaseException, attempts: int) -> RetryDecision:
        if self.is_fatal(error):
            return RetryDecision(retry=False, reason="fatal")
        if attempts >= self.max_attempts:
            return RetryDecision(retry=False, reason="max-attempts")
        return RetryDecision(retry=True, delay=self.delay_for(attempts), reason="retryable")


class TransferScheduler:
    """Bounded-concurrency dispatcher for transfer jobs.

    Example:
        scheduler = TransferScheduler(store, use_case)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        store: TransferJobStoreProtocol,
        runner: TransferRunner,
        config: SchedulerConfig | None = None,
        *,
        worker_id: str | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.store = store
        self.runner = runner
        self.config = config or settings.scheduler
        self.worker_id = worker_id or default_worker_id()
        self.policy = policy or RetryPolicy.from_config(self.config)
        self._active: set[asyncio.Task[None]] = set()
        self._loops: list[asyncio.Task[None]] = []
        self._stop = asyncio.Event()

    @property
    def active_jobs(self) -> int:
        return len(self._active)

    @property
    def running(self) -> bool:
        return bool(self._loops)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        if self._loops:
            return
        self._stop.clear()
        self._loops = [
            asyncio.create_task(self._dispatch_loop(), name="tunebridge-dispatch"),
            asyncio.create_task(self._maintenance_loop(), name="tunebridge-maintenance"),
        ]
        logger.info(
            "Scheduler started",
            worker_id=self.worker_id,
            concurrency=self.config.concurrency,
        )

    async def stop(self) -> None:
        """Stop polling and wait up to shutdown_timeout for running jobs."""
        self._stop.set()
        if self._loops:
            await asyncio.gather(*self._loops, return_exceptions=True)
            self._loops = []

        if self._active:
            logger.info(
                f"Waiting for {len(self._active)} running jobs",
                timeout=self.config.shutdown_timeout,
            )
            _, pending = await asyncio.wait(
                set(self._active), timeout=self.config.shutdown_timeout
            )
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Scheduler stopped", worker_id=self.worker_id)

    async def _sleep(self, seconds: float) -> None:
        """Sleep that ends early when stop() is requested."""
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)

    async def _dispatch_loop(self) -> None:
        while not self._stop.is_set():
            try:
                await self._dispatch_due()
            except Exception as e:
                logger.exception(f"Dispatch round failed: {e}")
            await self._sleep(self.config.poll_interval)

    async def _maintenance_loop(self) -> None:
        while not self._stop.is_set():
            try:
                await self.run_maintenance()
            except Exception as e:
                logger.exception(f"Maintenance sweep failed: {e}")
            await self._sleep(self.config.cleanup_interval)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def run_once(self) -> int:
        """Dispatch one round of due jobs and wait for them to finish.

        Returns:
            Number of jobs this worker claimed
        """
        tasks = await self._dispatch_due()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)

    async def _dispatch_due(self) -> list[asyncio.Task[None]]:
        capacity = self.config.concurrency - len(self._active)
        if capacity <= 0:
            return []

        started = []
        for job in await self.store.find_due(capacity):
            try:
                claimed = await self.store.claim(
                    job.id, self.worker_id, self.config.lease_seconds
                )
            except LockConflict:
                logger.debug("Job already claimed elsewhere", job_id=job.id)
                continue

            task = asyncio.create_task(self._execute(claimed), name=f"transfer-{job.id}")
            self._active.add(task)
            task.add_done_callback(self._active.discard)
            started.append(task)

        if started:
            logger.debug(f"Dispatched {len(started)} jobs", worker_id=self.worker_id)
        return started

    async def _heartbeat(self, job_id: str) -> None:
        while True:
            await asyncio.sleep(self.config.lease_renew_interval)
            try:
                await self.store.renew_lease(
                    job_id, self.worker_id, self.config.lease_seconds
                )
            except LockConflict:
                logger.warning("Lost lease on running job", job_id=job_id)
                return
            except Exception as e:
                # transient store failures must not end renewals for a live job
                logger.warning(
                    "Lease renewal failed, retrying next interval",
                    job_id=job_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def _execute(self, job: TransferJob) -> None:
        heartbeat = asyncio.create_task(self._heartbeat(job.id))
        try:
            await self.runner.execute(
                TransferPlaylistCommand(job=job, worker_id=self.worker_id)
            )
        except LockConflict:
            logger.warning(
                "Abandoning job after losing its lease",
                job_id=job.id,
                worker_id=self.worker_id,
            )
        except asyncio.CancelledError:
            await self._release_on_shutdown(job)
            raise
        except Exception as e:
            await self._handle_failure(job, e)
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await heartbeat

    async def _handle_failure(self, job: TransferJob, error: Exception) -> None:
        decision = self.policy.decide(error, job.attempts)
        message = str(error) or type(error).__name__
        try:
            if decision.retry:
                await self.store.requeue(
                    job.id,
                    self.worker_id,
                    utc_now() + timedelta(seconds=decision.delay),
                    error=message,
                )
                logger.warning(
                    "Requeued job for retry",
                    job_id=job.id,
                    attempts=job.attempts,
                    delay=decision.delay,
                    error_type=type(error).__name__,
                )
            else:
                await self.store.mark_failed(
                    job.id,
                    self.worker_id,
                    message,
                    meta={"phase": str(TransferPhase.ERROR)},
                )
                logger.error(
                    "Job failed permanently",
                    job_id=job.id,
                    attempts=job.attempts,
                    reason=decision.reason,
                    error_type=type(error).__name__,
                )
        except LockConflict:
            logger.warning("Lease lost before recording failure", job_id=job.id)

    async def _release_on_shutdown(self, job: TransferJob) -> None:
        try:
            await self.store.requeue(
                job.id, self.worker_id, utc_now(), error="Worker shut down mid-transfer"
            )
        except LockConflict:
            logger.debug("Lease already released", job_id=job.id)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def run_maintenance(self) -> dict[str, int]:
        """Requeue stale processing jobs and prune expired finished ones."""
        requeued = await self.store.requeue_stale(self.config.stale_threshold_seconds)
        pruned = await self.store.prune(self.config.retention_days)
        return {"requeued": requeued, "pruned": pruned}
