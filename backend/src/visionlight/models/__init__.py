"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from visionlight.models.asset import Asset
from visionlight.models.credit import CreditBalance, CreditPool
from visionlight.models.job import (
    TERMINAL_STATUSES,
    GenerationJob,
    InvalidStateTransition,
    JobStatus,
    MediaKind,
)
from visionlight.models.user import AuthSession, User, UserRole

__all__ = [
    "Asset",
    "AuthSession",
    "CreditBalance",
    "CreditPool",
    "GenerationJob",
    "InvalidStateTransition",
    "JobStatus",
    "MediaKind",
    "TERMINAL_STATUSES",
    "User",
    "UserRole",
]
