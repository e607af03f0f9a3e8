"""Job sweep worker: polls in-flight generation jobs and settles their outcome.

Each pass:
1. Fails and refunds NEW jobs whose provider hand-off never completed
2. Lists PROCESSING jobs that carry a provider handle
3. Polls the ones that are due, with bounded concurrency and one session per job

The persisted job rows are the only source of truth. The in-memory
PollScheduler just spaces out polls; after a restart every job is due
immediately, which is also what makes start-up recovery work.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable
from uuid import UUID

import structlog

from visionlight.core.config import Settings
from visionlight.models.job import TERMINAL_STATUSES, GenerationJob, JobStatus, MediaKind
from visionlight.services.orchestrator import JobOrchestrator

logger = structlog.get_logger(__name__)


class PollScheduler:
    """Next-due map keyed by job id."""

    def __init__(
        self,
        intervals: dict[MediaKind, float],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.intervals = intervals
        self.clock = clock
        self._next_due: dict[UUID, float] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "PollScheduler":
        return cls(
            {
                MediaKind.IMAGE: settings.image_poll_interval_seconds,
                MediaKind.CAROUSEL: settings.carousel_poll_interval_seconds,
                MediaKind.VIDEO: settings.video_poll_interval_seconds,
            }
        )

    def is_due(self, job_id: UUID) -> bool:
        """Unknown jobs are always due."""
        return self.clock() >= self._next_due.get(job_id, 0.0)

    def not_due(self) -> set[UUID]:
        """Ids that must not be polled yet."""
        now = self.clock()
        return {job_id for job_id, due in self._next_due.items() if due > now}

    def mark_polled(self, job_id: UUID, media_kind: MediaKind) -> None:
        self._next_due[job_id] = self.clock() + self.intervals.get(media_kind, 10.0)

    def forget(self, job_id: UUID) -> None:
        self._next_due.pop(job_id, None)

    def __len__(self) -> int:
        return len(self._next_due)


@dataclass
class SweepStats:
    stale_failed: int = 0
    polled: int = 0
    ready: int = 0
    failed: int = 0
    errors: int = 0


async def poll_single_job(
    job: GenerationJob,
    orchestrator: JobOrchestrator,
    semaphore: asyncio.Semaphore,
) -> JobStatus:
    """Poll one job while holding a slot of the concurrency limit.

    Args:
        job: Detached snapshot of a PROCESSING job
        orchestrator: Applies the poll outcome
        semaphore: Bounds concurrent outbound polls

    Returns:
        Status of the job after the poll
    """
    async with semaphore:
        return await orchestrator.poll_job(job)


async def sweep_once(
    orchestrator: JobOrchestrator,
    settings: Settings,
    scheduler: PollScheduler | None = None,
) -> SweepStats:
    """Run a single sweep pass.

    Args:
        orchestrator: Job orchestrator
        settings: Application settings (batch size, concurrency, stale cutoff)
        scheduler: Optional poll spacing; without one every job is polled

    Returns:
        Counters for this pass
    """
    stats = SweepStats()
    stats.stale_failed = await orchestrator.fail_stale_submissions(
        timedelta(seconds=settings.submission_stale_seconds),
        limit=settings.sweep_batch_size,
    )

    # Excluded in SQL so the batch limit only counts due jobs
    exclude = scheduler.not_due() if scheduler is not None else set()
    jobs = await orchestrator.list_processing_jobs(limit=settings.sweep_batch_size, exclude=exclude)
    if not jobs:
        return stats

    semaphore = asyncio.Semaphore(settings.max_concurrent_polls)
    tasks = [poll_single_job(job, orchestrator, semaphore) for job in jobs]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    for job, result in zip(jobs, results):
        stats.polled += 1
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            stats.errors += 1
            logger.error(
                "job.poll.unexpected_error",
                job_id=str(job.id),
                error=str(result),
                error_type=type(result).__name__,
            )
            if scheduler is not None:
                scheduler.mark_polled(job.id, job.media_kind)
            continue

        if result == JobStatus.READY:
            stats.ready += 1
        elif result == JobStatus.FAILED:
            stats.failed += 1

        if scheduler is not None:
            if result in TERMINAL_STATUSES:
                scheduler.forget(job.id)
            else:
                scheduler.mark_polled(job.id, job.media_kind)

    logger.info(
        "sweep.completed",
        polled=stats.polled,
        ready=stats.ready,
        failed=stats.failed,
        errors=stats.errors,
        stale_failed=stats.stale_failed,
    )
    return stats


async def run_job_sweep_worker(orchestrator: JobOrchestrator, settings: Settings) -> None:
    """Main worker loop for the job sweep.

    Sweeps at SWEEP_INTERVAL_SECONDS. The first pass runs immediately and
    doubles as crash recovery: every persisted PROCESSING job is polled and
    every stale NEW job is settled.

    Args:
        orchestrator: Job orchestrator
        settings: Application settings (intervals, batch size, concurrency)
    """
    scheduler = PollScheduler.from_settings(settings)

    logger.info(
        "worker.started",
        worker="job_sweep",
        sweep_interval=settings.sweep_interval_seconds,
        batch_size=settings.sweep_batch_size,
        max_concurrent_polls=settings.max_concurrent_polls,
    )

    try:
        while True:
            try:
                await sweep_once(orchestrator, settings, scheduler)
                await asyncio.sleep(settings.sweep_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    worker="job_sweep",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker="job_sweep")
        raise
