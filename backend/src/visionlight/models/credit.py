"""CreditBalance entity - one named credit pool of one user."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlmodel import Field, SQLModel

from visionlight.core.timezone import utcnow


class CreditPool(str, Enum):
    """Closed set of credit pools.

    One pool per product line plus the legacy aggregate balance.
    """

    PICDRIFT = "picdrift"
    IMAGE_FX = "image_fx"
    VIDEO_FX1 = "video_fx1"
    VIDEO_FX2 = "video_fx2"
    LEGACY = "legacy"


class CreditBalance(SQLModel, table=True):
    """CreditBalance holds the current amount of a single pool for a user.

    Rows are only ever changed with relative SQL updates (balance = balance +/- x).
    """

    __tablename__ = "credit_balances"  # type: ignore[assignment]

    user_id: UUID = Field(foreign_key="users.id", primary_key=True)
    pool: CreditPool = Field(primary_key=True)
    balance: float = Field(default=0)
    updated_at: datetime = Field(default_factory=utcnow)
