"""CreditBalance repository.

Balances are only changed with single relative statements, never read-modify-write.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from visionlight.core.timezone import utcnow
from visionlight.models.credit import CreditBalance, CreditPool


class CreditBalanceRepository:
    """Repository for per-pool credit balances."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def try_debit(self, user_id: UUID, pool: CreditPool, amount: float) -> bool:
        """Atomically decrement a balance if it covers `amount`.

        Query explanation:
        - UPDATE ... SET balance = balance - :amount
        - WHERE user_id = :user AND pool = :pool AND balance >= :amount

        Two concurrent debits can never both pass the guard on a balance that
        only covers one of them.

        Args:
            user_id: Owner of the pool
            pool: Credit pool to debit
            amount: Non-negative amount

        Returns:
            True if the balance was decremented, False if the row is missing or too low
        """
        result = await self.session.execute(
            update(CreditBalance)
            .where(
                CreditBalance.user_id == user_id,  # type: ignore[arg-type]
                CreditBalance.pool == pool,  # type: ignore[arg-type]
                CreditBalance.balance >= amount,  # type: ignore[arg-type,operator]
            )
            .values(balance=CreditBalance.balance - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def credit(self, user_id: UUID, pool: CreditPool, amount: float) -> None:
        """Increment a balance, creating the row when missing (UPSERT).

        Query explanation:
        - INSERT: Try to insert a row holding `amount`
        - ON CONFLICT (user_id, pool): If the pool row already exists
        - DO UPDATE: balance = balance + :amount

        Args:
            user_id: Owner of the pool
            pool: Credit pool to increment
            amount: Non-negative amount
        """
        table = CreditBalance.__table__  # type: ignore[attr-defined]
        now = utcnow()
        dialect = self.session.bind.dialect.name if self.session.bind is not None else "postgresql"
        insert = sqlite.insert if dialect == "sqlite" else postgresql.insert

        stmt = insert(table).values(user_id=user_id, pool=pool, balance=amount, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "pool"],
            set_={"balance": table.c.balance + amount, "updated_at": now},
        )
        await self.session.execute(stmt)

    async def get_balance(self, user_id: UUID, pool: CreditPool) -> float | None:
        """Retrieve one pool's balance, None when the row does not exist."""
        result = await self.session.execute(
            select(CreditBalance.balance).where(
                CreditBalance.user_id == user_id,  # type: ignore[arg-type]
                CreditBalance.pool == pool,  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def get_all(self, user_id: UUID) -> list[CreditBalance]:
        """Retrieve every existing pool row of a user."""
        result = await self.session.execute(
            select(CreditBalance).where(CreditBalance.user_id == user_id)  # type: ignore[arg-type]
        )
        return list(result.scalars().all())
