"""User and AuthSession entities - identities and their bearer sessions."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import field_validator
from sqlmodel import Field, SQLModel

from visionlight.core.timezone import utcnow


class UserRole(str, Enum):
    """Authorization role of a user."""

    USER = "user"
    ADMIN = "admin"


class User(SQLModel, table=True):
    """User owns jobs, assets and credit pools."""

    __tablename__ = "users"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: str = Field(max_length=255, unique=True, index=True)
    name: Optional[str] = Field(default=None, max_length=255)
    role: UserRole = Field(default=UserRole.USER)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Normalize email to lowercase and require an @."""
        if "@" not in v:
            raise ValueError("Email must contain @")
        return v.strip().lower()


class AuthSession(SQLModel, table=True):
    """AuthSession maps an opaque bearer token to a user until it expires."""

    __tablename__ = "auth_sessions"  # type: ignore[assignment]

    token: str = Field(primary_key=True, max_length=128)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    expires_at: datetime
    created_at: datetime = Field(default_factory=utcnow)
