"""Asset repository."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from visionlight.models.asset import Asset


class AssetRepository:
    """Repository for library assets."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, asset: Asset) -> Asset:
        """Persist new asset to database."""
        self.session.add(asset)
        await self.session.flush()
        return asset

    async def list_by_user(self, user_id: UUID, limit: int = 100) -> list[Asset]:
        """Retrieve a user's assets, newest first."""
        result = await self.session.execute(
            select(Asset)
            .where(Asset.user_id == user_id)  # type: ignore[arg-type]
            .order_by(Asset.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
