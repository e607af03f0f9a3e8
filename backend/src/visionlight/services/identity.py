"""Bearer-token identity: session creation and validation."""

import secrets
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

import structlog

from visionlight.core.timezone import utcnow
from visionlight.models.user import AuthSession, UserRole
from visionlight.uow import UnitOfWork

logger = structlog.get_logger()


@dataclass(frozen=True)
class Identity:
    user_id: UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class IdentityService:
    """Maps opaque bearer tokens to users.

    Expired sessions, and sessions whose user no longer exists, are deleted
    when they are presented.
    """

    def __init__(self, session_ttl: timedelta = timedelta(days=7)):
        self.session_ttl = session_ttl

    async def create_session(self, uow: UnitOfWork, user_id: UUID) -> str:
        """Issue a new token for `user_id`.

        Returns:
            The bearer token
        """
        token = secrets.token_hex(32)
        await uow.sessions.add(
            AuthSession(token=token, user_id=user_id, expires_at=utcnow() + self.session_ttl)
        )
        logger.info("identity.session.created", user_id=str(user_id))
        return token

    async def validate_token(self, uow: UnitOfWork, token: str) -> Identity | None:
        """Resolve a bearer token.

        Returns:
            Identity for a live session, None otherwise
        """
        if not token:
            return None

        auth_session = await uow.sessions.get(token)
        if auth_session is None:
            return None

        if utcnow() > auth_session.expires_at:
            await uow.sessions.delete(token)
            logger.info("identity.session.expired", user_id=str(auth_session.user_id))
            return None

        user = await uow.users.get_by_id(auth_session.user_id)
        if user is None:
            await uow.sessions.delete(token)
            logger.warning("identity.session.orphaned", user_id=str(auth_session.user_id))
            return None

        return Identity(user_id=user.id, role=user.role)

    async def revoke(self, uow: UnitOfWork, token: str) -> None:
        await uow.sessions.delete(token)
