"""Asset entity - long-lived library entry promoted from a finished job."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from visionlight.core.timezone import utcnow


class Asset(SQLModel, table=True):
    """Asset is a permanent media item in a user's library."""

    __tablename__ = "assets"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    url: str
    aspect_ratio: str = Field(default="16:9", max_length=16)
    media_kind: str = Field(max_length=20)  # "image" or "video"
    source_job_id: Optional[UUID] = Field(default=None)  # informational, job may be deleted
    created_at: datetime = Field(default_factory=utcnow)
