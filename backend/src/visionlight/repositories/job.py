"""GenerationJob repository.

Every state change goes through `compare_and_set`, a conditional UPDATE keyed on
the status the caller observed. A late or duplicate actor matches zero rows and
becomes a no-op.
"""

from datetime import datetime
from typing import Collection
from uuid import UUID

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from visionlight.core.timezone import utcnow
from visionlight.models.job import GenerationJob, JobStatus

# Columns a transition is allowed to rewrite
_MUTABLE_COLUMNS = (
    "status",
    "progress",
    "provider",
    "external_id",
    "status_url",
    "result_url",
    "result_urls",
    "error",
    "updated_at",
    "dispatched_at",
    "submitted_at",
    "completed_at",
)


class GenerationJobRepository:
    """Repository for GenerationJob entities.

    Jobs handed to callers outside the session that loaded them are detached
    snapshots: mutating one never writes to the database by itself.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: GenerationJob) -> GenerationJob:
        """Persist new job to database.

        Args:
            job: GenerationJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve job by UUID.

        Args:
            job_id: Job's unique identifier

        Returns:
            GenerationJob if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationJob).where(GenerationJob.id == job_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_snapshot(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve a detached copy of a job.

        The returned object is expunged from the session, so transition methods
        can be called on it freely and only `compare_and_set` persists them.

        Args:
            job_id: Job's unique identifier

        Returns:
            Detached GenerationJob if found, None otherwise
        """
        job = await self.get_by_id(job_id)
        if job is not None:
            self.session.expunge(job)
        return job

    async def compare_and_set(
        self,
        job: GenerationJob,
        expected_status: JobStatus,
        require_undispatched: bool = False,
    ) -> bool:
        """Write a job's mutable columns if the stored row is still in `expected_status`.

        Query explanation:
        - WHERE id = :id AND status = :expected: Only the actor that observed
          the current state wins
        - AND dispatched_at IS NULL (optional): The job was not yet claimed for
          provider hand-off

        Args:
            job: Detached job carrying the new column values
            expected_status: Status the caller read before mutating `job`
            require_undispatched: Also require the stored job to be unclaimed

        Returns:
            True if exactly one row was updated, False if another actor got there first
        """
        conditions = [
            GenerationJob.id == job.id,
            GenerationJob.status == expected_status,
        ]
        if require_undispatched:
            conditions.append(GenerationJob.dispatched_at.is_(None))  # type: ignore[union-attr]

        values = {name: getattr(job, name) for name in _MUTABLE_COLUMNS}
        result = await self.session.execute(
            update(GenerationJob)
            .where(*conditions)  # type: ignore[arg-type]
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def update_progress(self, job_id: UUID, progress: int) -> bool:
        """Raise progress of a processing job.

        The row is only touched while it is still PROCESSING and the new value
        is strictly higher, so progress never moves backwards.

        Args:
            job_id: Job's unique identifier
            progress: New progress value (already clamped by the caller)

        Returns:
            True if the row changed
        """
        result = await self.session.execute(
            update(GenerationJob)
            .where(
                GenerationJob.id == job_id,  # type: ignore[arg-type]
                GenerationJob.status == JobStatus.PROCESSING,  # type: ignore[arg-type]
                GenerationJob.progress < progress,  # type: ignore[arg-type,operator]
            )
            .values(progress=progress, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def list_processing(
        self, limit: int = 100, exclude: Collection[UUID] = ()
    ) -> list[GenerationJob]:
        """Retrieve processing jobs that carry a provider handle, oldest submission first.

        Uses FOR UPDATE SKIP LOCKED so that several sweepers receive
        non-overlapping batches. The lock only lives as long as the listing
        transaction; polling happens afterwards in per-job sessions.

        Args:
            limit: Maximum number of jobs to retrieve (default: 100)
            exclude: Job ids to leave out before the limit applies (not due yet)

        Returns:
            List of processing jobs
        """
        query = select(GenerationJob).where(
            GenerationJob.status == JobStatus.PROCESSING,  # type: ignore[arg-type]
            GenerationJob.external_id.is_not(None),  # type: ignore[union-attr]
        )
        if exclude:
            query = query.where(GenerationJob.id.not_in(list(exclude)))  # type: ignore[attr-defined]

        result = await self.session.execute(
            query.order_by(GenerationJob.submitted_at.asc())  # type: ignore[union-attr]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def list_stale_new(
        self,
        cutoff: datetime,
        claimed_cutoff: datetime | None = None,
        limit: int = 100,
    ) -> list[GenerationJob]:
        """Retrieve NEW jobs whose hand-off to a provider never completed.

        Query explanation:
        - Unclaimed jobs (dispatched_at IS NULL) are stale once created before `cutoff`
        - Claimed jobs may still have a submit call in flight, so they are only
          stale once dispatched before `claimed_cutoff`

        Args:
            cutoff: Unclaimed jobs created before this instant are stale
            claimed_cutoff: Claimed jobs dispatched before this instant are stale
                (None: claimed jobs are never returned)
            limit: Maximum number of jobs to retrieve

        Returns:
            List of stale jobs, oldest first
        """
        unclaimed = and_(
            GenerationJob.dispatched_at.is_(None),  # type: ignore[union-attr]
            GenerationJob.created_at < cutoff,  # type: ignore[arg-type]
        )
        staleness = unclaimed
        if claimed_cutoff is not None:
            claimed = and_(
                GenerationJob.dispatched_at.is_not(None),  # type: ignore[union-attr]
                GenerationJob.dispatched_at < claimed_cutoff,  # type: ignore[operator]
            )
            staleness = or_(unclaimed, claimed)

        result = await self.session.execute(
            select(GenerationJob)
            .where(
                GenerationJob.status == JobStatus.NEW,  # type: ignore[arg-type]
                staleness,
            )
            .order_by(GenerationJob.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def list_by_user(self, user_id: UUID, limit: int = 50) -> list[GenerationJob]:
        """Retrieve a user's most recent jobs, newest first."""
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.user_id == user_id)  # type: ignore[arg-type]
            .order_by(GenerationJob.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete(self, job_id: UUID, expected_status: JobStatus) -> bool:
        """Delete a job if it is still in `expected_status`.

        Only used when finalizing ephemeral utility jobs.

        Returns:
            True if the row was deleted
        """
        result = await self.session.execute(
            delete(GenerationJob)
            .where(
                GenerationJob.id == job_id,  # type: ignore[arg-type]
                GenerationJob.status == expected_status,  # type: ignore[arg-type]
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]
