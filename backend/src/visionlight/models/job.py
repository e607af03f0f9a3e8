"""GenerationJob entity - one user-initiated generation request with lifecycle tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from visionlight.core.timezone import utcnow
from visionlight.models.credit import CreditPool


class MediaKind(str, Enum):
    """Kind of media a job produces."""

    IMAGE = "image"
    VIDEO = "video"
    CAROUSEL = "carousel"


class JobStatus(str, Enum):
    """Job lifecycle status."""

    NEW = "new"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.READY, JobStatus.FAILED, JobStatus.CANCELLED})


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


class GenerationJob(SQLModel, table=True):
    """GenerationJob tracks a generation request from submission to a terminal state.

    `cost_debited` and `credit_pool` are captured when the debit happens and are
    the only inputs to any later refund.
    """

    __tablename__ = "generation_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    media_kind: MediaKind
    status: JobStatus = Field(default=JobStatus.NEW, index=True)
    progress: int = Field(default=0, ge=0, le=100)

    prompt: str
    params: dict = Field(default_factory=dict, sa_column=Column(JSON))
    aspect_ratio: str = Field(default="16:9", max_length=16)
    ephemeral: bool = Field(default=False)

    # Resolved once at submission (see services.providers.registry)
    model: str = Field(max_length=100)
    provider: Optional[str] = Field(default=None, max_length=50)
    external_id: Optional[str] = Field(default=None, max_length=255)
    status_url: Optional[str] = Field(default=None)

    credit_pool: CreditPool
    cost_debited: float = Field(default=0, ge=0)

    result_url: Optional[str] = Field(default=None)
    result_urls: Optional[list] = Field(default=None, sa_column=Column(JSON))
    error: Optional[str] = Field(default=None, max_length=1000)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    dispatched_at: Optional[datetime] = Field(default=None)
    submitted_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_dispatched(self) -> None:
        """Claim a new job for provider hand-off; after this it can no longer be cancelled.

        Raises:
            InvalidStateTransition: If the job is not new or was already claimed
        """
        if self.status != JobStatus.NEW or self.dispatched_at is not None:
            raise InvalidStateTransition(
                f"Cannot dispatch job in {self.status.value} state (already claimed or finished)."
            )
        now = utcnow()
        self.dispatched_at = now
        self.updated_at = now

    def mark_processing(self, external_id: str, status_url: str | None) -> None:
        """Transition from new to processing once the provider accepted the job.

        Raises:
            InvalidStateTransition: If current status is not new
            ValueError: If external_id is empty
        """
        if self.status != JobStatus.NEW:
            raise InvalidStateTransition(
                f"Cannot mark processing from {self.status.value}. Job must be in new state."
            )
        if not external_id:
            raise ValueError("external_id is required")
        now = utcnow()
        self.external_id = external_id
        self.status_url = status_url
        self.status = JobStatus.PROCESSING
        self.submitted_at = now
        self.updated_at = now

    def mark_ready(self, result_url: str, result_urls: list[str] | None = None) -> None:
        """Transition from processing to ready.

        Raises:
            InvalidStateTransition: If current status is not processing
            ValueError: If result_url is empty
        """
        if self.status != JobStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot mark ready from {self.status.value}. Job must be in processing state."
            )
        if not result_url:
            raise ValueError("result_url is required")
        now = utcnow()
        self.result_url = result_url
        self.result_urls = result_urls
        self.progress = 100
        self.status = JobStatus.READY
        self.completed_at = now
        self.updated_at = now

    def mark_failed(self, error: str) -> None:
        """Transition from any non-terminal state to failed.

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        now = utcnow()
        self.error = error[:1000]
        self.progress = 0
        self.status = JobStatus.FAILED
        self.completed_at = now
        self.updated_at = now

    def mark_cancelled(self) -> None:
        """Transition from new to cancelled (pre-submission abort only).

        Raises:
            InvalidStateTransition: If the job is not new or was already handed to a provider
        """
        if self.status != JobStatus.NEW or self.dispatched_at is not None:
            raise InvalidStateTransition(
                f"Cannot cancel job in {self.status.value} state after provider hand-off."
                if self.status == JobStatus.NEW
                else f"Cannot cancel from {self.status.value}. Job must be in new state."
            )
        now = utcnow()
        self.status = JobStatus.CANCELLED
        self.completed_at = now
        self.updated_at = now
