"""Generation job orchestrator.

Owns the job lifecycle: debit and create on submission, reference image
preparation, provider hand-off, poll outcomes, refunds and status views.

Every transition is applied to a detached job snapshot and persisted with a
conditional UPDATE (see GenerationJobRepository.compare_and_set). When a
transition carries money (failure or cancellation refund) the refund is issued
in the same unit of work and only if the transition matched.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Collection
from uuid import UUID

import httpx
import structlog

from visionlight.core.config import Settings
from visionlight.core.timezone import utcnow
from visionlight.models.asset import Asset
from visionlight.models.credit import CreditPool
from visionlight.models.job import (
    GenerationJob,
    InvalidStateTransition,
    JobStatus,
    MediaKind,
)
from visionlight.services.credits.ledger import CreditLedger
from visionlight.services.credits.pricing import PricingTable, calculate_cost
from visionlight.services.exceptions import (
    InvalidStateError,
    JobNotFoundError,
    ProviderError,
    ProviderSubmissionError,
    ProviderTransientError,
    StorageError,
)
from visionlight.services.imaging.compositor import ImageCompositor, resolve_target_dimensions
from visionlight.services.imaging.outpaint import ReplicateOutpainter
from visionlight.services.providers.base import (
    PollPhase,
    PollResult,
    ProviderAdapter,
    SubmitHandle,
    SubmitRequest,
)
from visionlight.services.providers.registry import (
    ModelSpec,
    ProviderName,
    build_adapters,
    resolve_model,
)
from visionlight.services.status_projector import estimate_completion, project_status
from visionlight.services.storage.cloudinary_client import CloudinaryStorage
from visionlight.uow import UnitOfWork

logger = structlog.get_logger()

UowFactory = Callable[[], Awaitable[UnitOfWork]]

MAX_POLLED_PROGRESS = 95
PENDING_PROGRESS_STEP = 5


@dataclass(frozen=True)
class JobStatusView:
    """Read model returned to API callers."""

    job_id: UUID
    media_kind: MediaKind
    status: JobStatus
    progress: int
    phase_label: str
    result_url: str | None
    result_urls: list[str] | None
    error: str | None


def parse_duration(value: Any) -> int | None:
    """Accept 10, "10" or "10s"."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip().lower().removesuffix("s")
    return int(text) if text.isdigit() else None


def next_progress(current: int, hint: int | None) -> int:
    """Progress after a PENDING poll: the hint or a small step, capped below 100."""
    candidate = hint if hint is not None else current + PENDING_PROGRESS_STEP
    return min(MAX_POLLED_PROGRESS, max(current, candidate))


class JobOrchestrator:
    """Coordinates ledger, compositor, providers and storage for generation jobs."""

    def __init__(
        self,
        uow_factory: UowFactory,
        adapters: dict[ProviderName, ProviderAdapter],
        compositor: ImageCompositor,
        storage: CloudinaryStorage,
        settings: Settings,
        ledger: CreditLedger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize orchestrator.

        Args:
            uow_factory: Factory producing a UnitOfWork per transaction
            adapters: One adapter per provider
            compositor: Reference image compositor
            storage: Durable asset storage
            settings: Application settings (timeouts, pricing)
            ledger: Credit ledger (default: CreditLedger())
            transport: Optional httpx transport for reference downloads (tests)
        """
        self.uow_factory = uow_factory
        self.adapters = adapters
        self.compositor = compositor
        self.storage = storage
        self.settings = settings
        self.ledger = ledger or CreditLedger()
        self.pricing: PricingTable = settings.pricing_table()
        self._transport = transport

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_job(
        self,
        user_id: UUID,
        media_kind: MediaKind | str,
        prompt: str,
        params: dict[str, Any] | None = None,
    ) -> UUID:
        """Debit, record and hand a generation request to its provider.

        Workflow:
        1. Resolve model, frame size and cost (pure)
        2. Create the NEW job and debit its pool in one transaction
        3. Prepare the reference image (best effort)
        4. Claim the job for hand-off (fails if it was cancelled meanwhile)
        5. Submit to the provider and persist the handle as PROCESSING
        6. On any provider or persistence error: FAILED + refund

        Args:
            user_id: Requesting user
            media_kind: image, video or carousel
            prompt: Generation prompt
            params: model, aspect_ratio, duration, resolution,
                image_reference / image_references, ephemeral

        Returns:
            Job id. The job may already be FAILED; read its status.

        Raises:
            InsufficientFundsError: The pool cannot cover the cost; no job was recorded
            ValueError: Unknown media kind or empty prompt
        """
        params = dict(params or {})
        kind = MediaKind(media_kind)
        if not prompt or not prompt.strip():
            raise ValueError("prompt is required")

        spec = resolve_model(kind, params.get("model"))
        aspect_ratio = params.get("aspect_ratio") or ("16:9" if kind == MediaKind.VIDEO else "1:1")
        duration = parse_duration(params.get("duration"))
        width, height = resolve_target_dimensions(
            kind, aspect_ratio, params.get("resolution"), spec.name
        )
        cost = calculate_cost(kind, duration, spec.name, self.pricing)

        job = GenerationJob(
            user_id=user_id,
            media_kind=kind,
            prompt=prompt.strip(),
            params=params,
            aspect_ratio=aspect_ratio,
            ephemeral=bool(params.get("ephemeral", False)),
            model=spec.name,
            provider=spec.provider.value,
            credit_pool=spec.pool,
            cost_debited=cost,
        )

        async with await self.uow_factory() as uow:
            await uow.jobs.add(job)
            await self.ledger.debit(uow, user_id, spec.pool, cost)

        log = logger.bind(job_id=str(job.id), user_id=str(user_id), model=spec.name)
        log.info("job.created", media_kind=kind.value, cost=cost, pool=spec.pool.value)

        reference_url, reference_bytes = await self._prepare_reference(job, spec, width, height)

        job.mark_dispatched()
        async with await self.uow_factory() as uow:
            claimed = await uow.jobs.compare_and_set(job, JobStatus.NEW, require_undispatched=True)
        if not claimed:
            log.info("job.submission.skipped", reason="no longer new")
            return job.id

        request = SubmitRequest(
            model=spec.name,
            prompt=job.prompt,
            media_kind=kind,
            aspect_ratio=aspect_ratio,
            width=width,
            height=height,
            duration_seconds=duration,
            resolution=params.get("resolution"),
            reference_image_url=reference_url,
            reference_image=reference_bytes,
        )

        try:
            handle = await self._hand_off(spec.provider, request)
            job.mark_processing(handle.external_id, handle.status_url)
            async with await self.uow_factory() as uow:
                moved = await uow.jobs.compare_and_set(job, JobStatus.NEW)
            if not moved:
                log.error("job.submission.orphaned", external_id=handle.external_id)
                return job.id
        except Exception as e:
            log.error(
                "job.submission.failed",
                error_type=type(e).__name__,
                error_message=str(e),
            )
            await self._fail_and_refund(job.id, JobStatus.NEW, f"Submission failed: {e}")
            return job.id

        log.info("job.submitted", provider=spec.provider.value, external_id=handle.external_id)
        return job.id

    async def _hand_off(self, provider: ProviderName, request: SubmitRequest) -> SubmitHandle:
        """Submit within SUBMIT_DEADLINE_SECONDS.

        The deadline bounds how long a claimed job can stay NEW, which is what
        lets the stale sweep settle claimed jobs without racing a live submit.

        Raises:
            ProviderSubmissionError: No answer before the deadline, or no handle returned
        """
        deadline = self.settings.submit_deadline_seconds
        try:
            handle = await asyncio.wait_for(self.adapters[provider].submit(request), timeout=deadline)
        except TimeoutError as e:
            raise ProviderSubmissionError(
                f"{provider.value}: no answer within {deadline:.0f}s"
            ) from e
        if not handle.external_id:
            raise ProviderSubmissionError(f"{provider.value}: submission returned no job id")
        return handle

    def _reference_source(self, params: dict[str, Any]) -> str | None:
        reference = params.get("image_reference")
        if not reference:
            references = params.get("image_references") or []
            reference = references[0] if references else None
        return reference if isinstance(reference, str) and reference else None

    async def _prepare_reference(
        self, job: GenerationJob, spec: ModelSpec, width: int, height: int
    ) -> tuple[str | None, bytes | None]:
        """Download, conform and re-host the reference image.

        Returns:
            (durable URL or None, conforming JPEG bytes or None). Problems drop
            the reference instead of failing the job.
        """
        source_url = self._reference_source(job.params)
        if not source_url or not spec.accepts_reference:
            return None, None

        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.get(source_url, follow_redirects=True)
                response.raise_for_status()
                source = response.content
        except httpx.HTTPError as e:
            logger.warning("job.reference.download_failed", job_id=str(job.id), error=str(e))
            return None, None

        started = time.monotonic()
        conformed = await self.compositor.fit(source, width, height)
        logger.info(
            "job.reference.conformed",
            job_id=str(job.id),
            target=f"{width}x{height}",
            duration_seconds=round(time.monotonic() - started, 3),
        )

        try:
            url = await self.storage.upload(
                conformed,
                self.storage.folder_for(job.user_id, "image"),
                public_id=f"{job.id}_reference",
                resource_type="image",
                caption="Reference frame",
            )
        except StorageError as e:
            logger.warning("job.reference.upload_failed", job_id=str(job.id), error=str(e))
            url = None
        return url, conformed

    # ------------------------------------------------------------------
    # Poll outcomes
    # ------------------------------------------------------------------

    async def list_processing_jobs(
        self, limit: int, exclude: Collection[UUID] = ()
    ) -> list[GenerationJob]:
        """Detached snapshots of processing jobs, oldest submission first."""
        async with await self.uow_factory() as uow:
            return await uow.jobs.list_processing(limit=limit, exclude=exclude)

    def timeout_for(self, media_kind: MediaKind) -> timedelta:
        if media_kind == MediaKind.VIDEO:
            return timedelta(minutes=self.settings.video_timeout_minutes)
        return timedelta(minutes=self.settings.image_timeout_minutes)

    def is_timed_out(self, job: GenerationJob, now: datetime | None = None) -> bool:
        started = job.submitted_at or job.created_at
        return (now or utcnow()) - started > self.timeout_for(job.media_kind)

    async def poll_job(self, job: GenerationJob) -> JobStatus:
        """Poll one processing job and apply the outcome.

        Poll errors of any kind change nothing by themselves; the job-level
        timeout is checked after every poll that did not settle the job.

        Args:
            job: Detached snapshot of a PROCESSING job

        Returns:
            The job's status after this poll
        """
        log = logger.bind(job_id=str(job.id), provider=job.provider, external_id=job.external_id)
        result: PollResult | None = None

        try:
            adapter = self.adapters[ProviderName(job.provider)]
            handle = SubmitHandle(job.external_id or "", job.status_url)
            result = await adapter.poll(handle, job.progress)
        except ProviderTransientError as e:
            log.warning("job.poll.transient_error", error_message=str(e))
        except Exception as e:
            log.error("job.poll.error", error_type=type(e).__name__, error_message=str(e))

        if result is not None and result.phase == PollPhase.DONE and result.result_url:
            log.info("job.poll.done")
            status = await self.finalize(job, result)
            if status != JobStatus.PROCESSING:
                return status
            # Outputs could not be secured yet; retried on the next poll
            result = None

        if result is not None and result.phase == PollPhase.FAILED:
            log.info("job.poll.failed", error_message=result.error_message)
            if await self._fail_and_refund(
                job.id, JobStatus.PROCESSING, result.error_message or "Generation failed"
            ):
                return JobStatus.FAILED
            return await self._current_status(job.id)

        if self.is_timed_out(job):
            log.warning("job.poll.timeout", submitted_at=str(job.submitted_at))
            if await self._fail_and_refund(job.id, JobStatus.PROCESSING, "timeout"):
                return JobStatus.FAILED
            return await self._current_status(job.id)

        if result is None:
            return JobStatus.PROCESSING

        progress = next_progress(job.progress, result.progress_hint)
        if progress != job.progress:
            async with await self.uow_factory() as uow:
                await uow.jobs.update_progress(job.id, progress)
            log.debug("job.poll.progress", progress=progress)
        return JobStatus.PROCESSING

    async def finalize(self, job: GenerationJob, result: PollResult) -> JobStatus:
        """Re-host results and move the job to READY.

        Outputs behind provider credentials are downloaded by the adapter and
        uploaded as bytes. A public output whose re-host fails keeps the
        provider URL. A private output that cannot be downloaded or re-hosted
        leaves the job PROCESSING so a later poll (or the timeout) settles it.
        Ephemeral jobs are turned into a library asset and deleted in the same
        transaction.
        """
        adapter = self.adapters[ProviderName(job.provider)]
        urls = [u for u in (result.result_urls or [result.result_url]) if u]
        resource_type = "video" if job.media_kind == MediaKind.VIDEO else "image"
        folder = self.storage.folder_for(job.user_id, resource_type)

        hosted: list[str] = []
        for index, url in enumerate(urls):
            public_id = str(job.id) if len(urls) == 1 else f"{job.id}_{index}"
            try:
                source = await adapter.fetch_output(url)
            except ProviderError as e:
                logger.warning("job.output.download_failed", job_id=str(job.id), error=str(e))
                return JobStatus.PROCESSING

            try:
                hosted.append(
                    await self.storage.upload(
                        source,
                        folder,
                        public_id=public_id,
                        resource_type=resource_type,
                        caption=job.prompt[:100],
                    )
                )
            except StorageError as e:
                logger.warning("job.rehost.failed", job_id=str(job.id), error=str(e), url=url)
                if isinstance(source, bytes):
                    return JobStatus.PROCESSING
                hosted.append(url)

        job.mark_ready(hosted[0], hosted if job.media_kind == MediaKind.CAROUSEL else None)

        async with await self.uow_factory() as uow:
            if not await uow.jobs.compare_and_set(job, JobStatus.PROCESSING):
                logger.info("job.finalize.skipped", job_id=str(job.id), reason="already finalized")
                current = await uow.jobs.get_by_id(job.id)
                # Ephemeral jobs are deleted once ready
                return current.status if current else JobStatus.READY

            if job.ephemeral:
                await uow.assets.add(
                    Asset(
                        user_id=job.user_id,
                        url=hosted[0],
                        aspect_ratio=job.aspect_ratio,
                        media_kind=resource_type,
                        source_job_id=job.id,
                    )
                )
                await uow.jobs.delete(job.id, JobStatus.READY)

        logger.info("job.completed", job_id=str(job.id), ephemeral=job.ephemeral, outputs=len(hosted))
        return JobStatus.READY

    async def _current_status(self, job_id: UUID) -> JobStatus:
        """Stored status after a transition lost to another actor."""
        async with await self.uow_factory() as uow:
            current = await uow.jobs.get_by_id(job_id)
        return current.status if current else JobStatus.READY

    async def _fail_and_refund(
        self,
        job_id: UUID,
        expected_status: JobStatus,
        error: str,
        require_undispatched: bool = False,
    ) -> bool:
        """Move a job to FAILED and refund its debit, atomically.

        Returns:
            True if this call performed the transition (and refund)
        """
        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_snapshot(job_id)
            if job is None or job.status != expected_status:
                return False
            job.mark_failed(error)
            if not await uow.jobs.compare_and_set(
                job, expected_status, require_undispatched=require_undispatched
            ):
                return False
            await self.ledger.refund(uow, job.user_id, job.credit_pool, job.cost_debited)

        logger.info(
            "job.failed",
            job_id=str(job_id),
            error=error,
            refunded=job.cost_debited,
            pool=job.credit_pool.value,
        )
        return True

    async def fail_stale_submissions(
        self,
        older_than: timedelta,
        claimed_older_than: timedelta | None = None,
        limit: int = 100,
    ) -> int:
        """Fail and refund NEW jobs whose hand-off never completed.

        Unclaimed jobs are stale `older_than` after creation. Claimed jobs may
        have a submit call in flight, so they are measured from `dispatched_at`
        and only once the hand-off deadline plus a margin has passed
        (`claimed_older_than`, default Settings.claimed_stale_seconds).

        Returns:
            Number of jobs failed
        """
        if claimed_older_than is None:
            claimed_older_than = timedelta(seconds=self.settings.claimed_stale_seconds)
        now = utcnow()
        async with await self.uow_factory() as uow:
            stale = await uow.jobs.list_stale_new(
                now - older_than, claimed_cutoff=now - claimed_older_than, limit=limit
            )

        failed = 0
        for job in stale:
            claimed = job.dispatched_at is not None
            if await self._fail_and_refund(
                job.id,
                JobStatus.NEW,
                "submission interrupted",
                require_undispatched=not claimed,
            ):
                failed += 1
                if claimed:
                    logger.warning(
                        "job.submission.abandoned",
                        job_id=str(job.id),
                        dispatched_at=str(job.dispatched_at),
                    )
        if failed:
            logger.warning("job.stale_submissions.failed", count=failed)
        return failed

    # ------------------------------------------------------------------
    # Queries and cancellation
    # ------------------------------------------------------------------

    async def cancel_job(self, job_id: UUID, user_id: UUID | None = None) -> None:
        """Cancel a job that has not been handed to a provider; refunds its debit.

        Raises:
            JobNotFoundError: Unknown job (or owned by someone else)
            InvalidStateError: Job already handed off or finished
        """
        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_snapshot(job_id)
            if job is None or (user_id is not None and job.user_id != user_id):
                raise JobNotFoundError(f"Job {job_id} not found")
            try:
                job.mark_cancelled()
            except InvalidStateTransition as e:
                raise InvalidStateError(str(e)) from e
            if not await uow.jobs.compare_and_set(job, JobStatus.NEW, require_undispatched=True):
                raise InvalidStateError("Job was handed to a provider before it could be cancelled.")
            await self.ledger.refund(uow, job.user_id, job.credit_pool, job.cost_debited)

        logger.info("job.cancelled", job_id=str(job_id), refunded=job.cost_debited)

    async def get_job_status(self, job_id: UUID, user_id: UUID | None = None) -> JobStatusView:
        """Current status with projected progress and phase label.

        Raises:
            JobNotFoundError: Unknown job (or owned by someone else)
        """
        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_by_id(job_id)
        if job is None or (user_id is not None and job.user_id != user_id):
            raise JobNotFoundError(f"Job {job_id} not found")
        return self._view(job)

    async def list_jobs(self, user_id: UUID, limit: int = 50) -> list[JobStatusView]:
        """Status views of a user's most recent jobs, newest first."""
        async with await self.uow_factory() as uow:
            jobs = await uow.jobs.list_by_user(user_id, limit=limit)
        return [self._view(job) for job in jobs]

    def _view(self, job: GenerationJob) -> JobStatusView:
        started = job.submitted_at or job.created_at
        projected = project_status(
            started_at=started,
            estimated_completion_at=estimate_completion(job.media_kind, started),
            last_known_progress=job.progress,
            media_kind=job.media_kind,
            status=job.status,
        )
        return JobStatusView(
            job_id=job.id,
            media_kind=job.media_kind,
            status=job.status,
            progress=projected.progress,
            phase_label=projected.phase_label,
            result_url=job.result_url,
            result_urls=job.result_urls,
            error=job.error,
        )

    async def get_balances(self, user_id: UUID) -> dict[CreditPool, float]:
        async with await self.uow_factory() as uow:
            return await self.ledger.get_balances(uow, user_id)


def build_orchestrator(settings: Settings, uow_factory: UowFactory) -> JobOrchestrator:
    """Wire the orchestrator with production collaborators from settings."""
    storage = CloudinaryStorage(
        settings.cloudinary_cloud_name,
        settings.cloudinary_api_key,
        settings.cloudinary_api_secret,
        root_folder=settings.storage_root_folder,
    )
    outpainter = ReplicateOutpainter(
        settings.replicate_api_token,
        settings.replicate_outpaint_model,
        storage,
        max_attempts=settings.outpaint_max_attempts,
        poll_interval=settings.outpaint_poll_interval_seconds,
    )
    compositor = ImageCompositor(
        outpainter,
        tolerance=settings.aspect_tolerance,
        seam_margin=settings.outpaint_seam_margin,
    )
    return JobOrchestrator(
        uow_factory=uow_factory,
        adapters=build_adapters(settings),
        compositor=compositor,
        storage=storage,
        settings=settings,
    )
