"""User and AuthSession repositories."""

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from visionlight.models.user import AuthSession, User


class UserRepository:
    """Repository for User entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, user_id: UUID) -> User | None:
        """Retrieve user by UUID.

        Args:
            user_id: User's unique identifier

        Returns:
            User if found, None otherwise
        """
        result = await self.session.execute(select(User).where(User.id == user_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> User | None:
        """Retrieve user by email (case-insensitive).

        Args:
            email: Email address

        Returns:
            User if found, None otherwise
        """
        result = await self.session.execute(
            select(User).where(User.email == email.strip().lower())  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def add(self, user: User) -> User:
        """Persist new user to database."""
        self.session.add(user)
        await self.session.flush()
        return user


class AuthSessionRepository:
    """Repository for bearer-token sessions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, token: str) -> AuthSession | None:
        result = await self.session.execute(
            select(AuthSession).where(AuthSession.token == token)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def add(self, auth_session: AuthSession) -> AuthSession:
        self.session.add(auth_session)
        await self.session.flush()
        return auth_session

    async def delete(self, token: str) -> None:
        await self.session.execute(
            delete(AuthSession).where(AuthSession.token == token)  # type: ignore[arg-type]
        )
