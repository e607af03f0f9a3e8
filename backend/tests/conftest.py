"""pytest fixtures for Visionlight backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped factory bound to a fresh SQLite database
- session / uow_factory: Database access for a single test
- user / fund: A persisted user and a helper to top up its pools
- settings: Test settings (validation skipped)
- FakeAdapter / FakeStorage: In-memory provider and storage doubles
- orchestrator: JobOrchestrator wired with the doubles
"""

import os

# Must be set before visionlight.app is imported anywhere
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import timedelta  # noqa: E402
from typing import AsyncGenerator  # noqa: E402
from uuid import UUID  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from visionlight.core.config import Settings  # noqa: E402
from visionlight.core.database import setup_db_session  # noqa: E402
from visionlight.core.timezone import utcnow  # noqa: E402
from visionlight.models import CreditPool, GenerationJob, JobStatus, MediaKind, User  # noqa: E402
from visionlight.services.credits.ledger import CreditLedger  # noqa: E402
from visionlight.services.exceptions import StorageError  # noqa: E402
from visionlight.services.imaging.compositor import ImageCompositor  # noqa: E402
from visionlight.services.orchestrator import JobOrchestrator  # noqa: E402
from visionlight.services.providers.base import (  # noqa: E402
    PollResult,
    ProviderAdapter,
    SubmitHandle,
    SubmitRequest,
)
from visionlight.services.providers.registry import ProviderName  # noqa: E402
from visionlight.uow import create_uow_factory  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a session factory bound to a fresh SQLite file with all tables created.

    A file (not :memory:) is used so that concurrent sessions share one database.
    """
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    factory = setup_db_session(db_url)
    engine = factory.kw["bind"]

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest_asyncio.fixture(scope="function")
async def user(uow_factory) -> User:
    """Persist and return a regular user."""
    async with await uow_factory() as uow:
        created = await uow.users.add(User(email="creator@example.com", name="Creator"))
    return created


@pytest.fixture
def fund(uow_factory):
    """Top up one pool of a user: `await fund(user_id, CreditPool.VIDEO_FX2, 10)`."""

    async def _fund(user_id: UUID, pool: CreditPool, amount: float) -> None:
        async with await uow_factory() as uow:
            await CreditLedger().add_credits(uow, user_id, amount, pool)

    return _fund


async def balance_of(uow_factory, user_id: UUID, pool: CreditPool) -> float:
    async with await uow_factory() as uow:
        balances = await CreditLedger().get_balances(uow, user_id)
    return balances[pool]


@pytest.fixture
def settings() -> Settings:
    return Settings(  # type: ignore[call-arg]
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        APP_ENV="test",
        SUBMISSION_STALE_SECONDS=600,
        MAX_CONCURRENT_POLLS=4,
    )


class FakeAdapter(ProviderAdapter):
    """Provider double with scripted submit/poll behavior.

    `poll_results` is consumed in order; the last entry repeats.
    """

    def __init__(self, name: str = "fake", poll_results=None, submit_error=None):
        self.name = name
        self.poll_results = list(poll_results or [PollResult.pending()])
        self.submit_error = submit_error
        self.poll_error = None
        self.submitted: list[SubmitRequest] = []
        self.polled: list[SubmitHandle] = []

    async def submit(self, request: SubmitRequest) -> SubmitHandle:
        self.submitted.append(request)
        if self.submit_error is not None:
            raise self.submit_error
        return SubmitHandle(
            external_id=f"{self.name}-{len(self.submitted)}",
            status_url=f"https://provider.test/{self.name}/{len(self.submitted)}",
        )

    async def poll(self, handle: SubmitHandle, current_progress: int = 0) -> PollResult:
        self.polled.append(handle)
        if self.poll_error is not None:
            raise self.poll_error
        if len(self.poll_results) > 1:
            return self.poll_results.pop(0)
        return self.poll_results[0]


class FakeStorage:
    """Storage double returning deterministic URLs."""

    def __init__(self, fail: bool = False):
        self.root_folder = "visionlight"
        self.fail = fail
        self.uploads: list[dict] = []

    def folder_for(self, user_id, resource_type: str) -> str:
        return f"{self.root_folder}/user_{user_id}/{resource_type}s"

    async def upload(self, data, folder, public_id=None, resource_type="auto", caption=None) -> str:
        if self.fail:
            raise StorageError("storage unavailable")
        self.uploads.append(
            {"data": data, "folder": folder, "public_id": public_id, "resource_type": resource_type}
        )
        return f"https://cdn.test/{folder}/{public_id or len(self.uploads)}"


@pytest.fixture
def adapters() -> dict[ProviderName, FakeAdapter]:
    return {name: FakeAdapter(name.value) for name in ProviderName}


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def orchestrator(uow_factory, adapters, storage, settings) -> JobOrchestrator:
    return JobOrchestrator(
        uow_factory=uow_factory,
        adapters=adapters,  # type: ignore[arg-type]
        compositor=ImageCompositor(None),
        storage=storage,  # type: ignore[arg-type]
        settings=settings,
    )


async def get_job(uow_factory, job_id) -> GenerationJob | None:
    async with await uow_factory() as uow:
        return await uow.jobs.get_by_id(job_id)


async def create_new_job(uow_factory, user_id: UUID, cost: float = 5, created_at=None) -> GenerationJob:
    """Persist a debited job that was never handed to a provider."""
    job = GenerationJob(
        user_id=user_id,
        media_kind=MediaKind.VIDEO,
        prompt="Slow pan over a canyon",
        model="sora-2",
        provider="openai",
        credit_pool=CreditPool.VIDEO_FX2,
        cost_debited=cost,
    )
    if created_at is not None:
        job.created_at = created_at
    async with await uow_factory() as uow:
        await uow.jobs.add(job)
        await CreditLedger().debit(uow, user_id, CreditPool.VIDEO_FX2, cost)
    return job


async def processing_snapshot(orchestrator, job_id) -> GenerationJob:
    """Detached copy of a job the orchestrator handed to its provider."""
    async with await orchestrator.uow_factory() as uow:
        snapshot = await uow.jobs.get_snapshot(job_id)
    assert snapshot is not None
    assert snapshot.status == JobStatus.PROCESSING
    return snapshot


async def backdate_submission(uow_factory, job_id, age: timedelta) -> None:
    """Move a processing job's submitted_at into the past."""
    async with await uow_factory() as uow:
        snapshot = await uow.jobs.get_snapshot(job_id)
        snapshot.submitted_at = utcnow() - age
        assert await uow.jobs.compare_and_set(snapshot, JobStatus.PROCESSING)
