"""Unit of Work pattern tests.

Tests focus on transaction management:
- Successful commits persist changes
- Exceptions trigger rollback
- A job transition and its refund are atomic
"""

import pytest

from conftest import balance_of, create_new_job, get_job
from visionlight.models.credit import CreditPool
from visionlight.models.job import JobStatus
from visionlight.models.user import User


@pytest.mark.asyncio
async def test_uow_commits_on_successful_exit(uow_factory):
    """Changes made within the context should persist after the context exits."""
    async with await uow_factory() as uow:
        user = await uow.users.add(User(email="commit@example.com"))
        user_id = user.id

    async with await uow_factory() as uow:
        found = await uow.users.get_by_id(user_id)
        assert found is not None
        assert found.email == "commit@example.com"


@pytest.mark.asyncio
async def test_uow_rollback_on_exception(uow_factory):
    """Exceptions roll back the transaction and propagate."""
    with pytest.raises(ValueError, match="Simulated error"):
        async with await uow_factory() as uow:
            await uow.users.add(User(email="rollback@example.com"))
            raise ValueError("Simulated error")

    async with await uow_factory() as uow:
        assert await uow.users.get_by_email("rollback@example.com") is None


@pytest.mark.asyncio
async def test_transition_and_refund_roll_back_together(uow_factory, user, fund):
    """If anything fails after the refund, neither the refund nor the transition lands."""
    await fund(user.id, CreditPool.VIDEO_FX2, 5)
    job = await create_new_job(uow_factory, user.id)

    with pytest.raises(RuntimeError):
        async with await uow_factory() as uow:
            snapshot = await uow.jobs.get_snapshot(job.id)
            snapshot.mark_failed("boom")
            assert await uow.jobs.compare_and_set(snapshot, JobStatus.NEW)
            await uow.credits.credit(user.id, CreditPool.VIDEO_FX2, 5)
            raise RuntimeError("crash before commit")

    assert (await get_job(uow_factory, job.id)).status == JobStatus.NEW
    assert await balance_of(uow_factory, user.id, CreditPool.VIDEO_FX2) == 0
