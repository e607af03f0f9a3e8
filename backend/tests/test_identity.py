"""Identity service tests (bearer sessions)."""

from datetime import timedelta

import pytest

from visionlight.models.user import User, UserRole
from visionlight.services.identity import IdentityService


@pytest.mark.asyncio
async def test_session_round_trip(uow_factory, user):
    service = IdentityService()

    async with await uow_factory() as uow:
        token = await service.create_session(uow, user.id)
    async with await uow_factory() as uow:
        identity = await service.validate_token(uow, token)

    assert len(token) == 64
    assert identity.user_id == user.id
    assert identity.role == UserRole.USER
    assert not identity.is_admin


@pytest.mark.asyncio
async def test_admin_identity(uow_factory):
    service = IdentityService()
    async with await uow_factory() as uow:
        admin = await uow.users.add(User(email="admin@example.com", role=UserRole.ADMIN))
        token = await service.create_session(uow, admin.id)

    async with await uow_factory() as uow:
        identity = await service.validate_token(uow, token)

    assert identity.is_admin


@pytest.mark.asyncio
async def test_expired_session_is_rejected_and_deleted(uow_factory, user):
    service = IdentityService(session_ttl=timedelta(seconds=-1))

    async with await uow_factory() as uow:
        token = await service.create_session(uow, user.id)
    async with await uow_factory() as uow:
        assert await service.validate_token(uow, token) is None
    async with await uow_factory() as uow:
        assert await uow.sessions.get(token) is None


@pytest.mark.asyncio
async def test_unknown_and_revoked_tokens(uow_factory, user):
    service = IdentityService()

    async with await uow_factory() as uow:
        assert await service.validate_token(uow, "") is None
        assert await service.validate_token(uow, "nope") is None
        token = await service.create_session(uow, user.id)

    async with await uow_factory() as uow:
        await service.revoke(uow, token)
    async with await uow_factory() as uow:
        assert await service.validate_token(uow, token) is None
