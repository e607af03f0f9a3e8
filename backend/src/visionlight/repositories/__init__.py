"""Repository layer.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from visionlight.repositories.asset import AssetRepository
from visionlight.repositories.credit import CreditBalanceRepository
from visionlight.repositories.job import GenerationJobRepository
from visionlight.repositories.user import AuthSessionRepository, UserRepository

__all__ = [
    "AssetRepository",
    "AuthSessionRepository",
    "CreditBalanceRepository",
    "GenerationJobRepository",
    "UserRepository",
]
