"""Credit ledger operations on top of the credit balance repository.

Every method takes the caller's UnitOfWork so a debit or refund commits in the
same transaction as the job change that caused it.
"""

from uuid import UUID

import structlog

from visionlight.models.credit import CreditPool
from visionlight.services.exceptions import InsufficientFundsError, UnknownPoolError
from visionlight.uow import UnitOfWork

logger = structlog.get_logger()


def coerce_pool(pool: CreditPool | str) -> CreditPool:
    """Return the CreditPool member for `pool`.

    Raises:
        UnknownPoolError: If `pool` names no pool
    """
    if isinstance(pool, CreditPool):
        return pool
    try:
        return CreditPool(pool)
    except ValueError:
        raise UnknownPoolError(f"Unknown credit pool: {pool!r}") from None


def _check_amount(amount: float) -> float:
    if amount < 0:
        raise ValueError(f"amount must be non-negative, got {amount}")
    return amount


class CreditLedger:
    """Debits, refunds and balance reads across the closed set of pools."""

    async def debit(
        self, uow: UnitOfWork, user_id: UUID, pool: CreditPool | str, amount: float
    ) -> None:
        """Atomically take `amount` from a pool.

        Args:
            uow: Active unit of work
            user_id: Owner of the pool
            pool: Pool to debit
            amount: Non-negative amount

        Raises:
            UnknownPoolError: If pool is not a known pool
            InsufficientFundsError: If the pool is missing or holds less than amount
        """
        target = coerce_pool(pool)
        _check_amount(amount)

        if await uow.credits.try_debit(user_id, target, amount):
            logger.info("ledger.debit.applied", user_id=str(user_id), pool=target.value, amount=amount)
            return

        available = await uow.credits.get_balance(user_id, target)
        logger.info(
            "ledger.debit.rejected",
            user_id=str(user_id),
            pool=target.value,
            amount=amount,
            available=available,
        )
        raise InsufficientFundsError(target.value, amount, available)

    async def refund(
        self, uow: UnitOfWork, user_id: UUID, pool: CreditPool | str, amount: float
    ) -> None:
        """Give `amount` back to a pool. Creates the pool row if it does not exist."""
        target = coerce_pool(pool)
        _check_amount(amount)
        await uow.credits.credit(user_id, target, amount)
        logger.info("ledger.refund.applied", user_id=str(user_id), pool=target.value, amount=amount)

    async def get_balances(self, uow: UnitOfWork, user_id: UUID) -> dict[CreditPool, float]:
        """Return every pool's balance for a user, zero for pools without a row."""
        balances = {pool: 0.0 for pool in CreditPool}
        for row in await uow.credits.get_all(user_id):
            balances[row.pool] = row.balance
            if row.balance < 0:
                logger.warning(
                    "ledger.balance.negative",
                    user_id=str(user_id),
                    pool=row.pool.value,
                    balance=row.balance,
                )
        return balances

    # Single-balance compatibility layer (the aggregate balance of older accounts)

    async def debit_legacy(self, uow: UnitOfWork, user_id: UUID, amount: float) -> None:
        await self.debit(uow, user_id, CreditPool.LEGACY, amount)

    async def refund_legacy(self, uow: UnitOfWork, user_id: UUID, amount: float) -> None:
        await self.refund(uow, user_id, CreditPool.LEGACY, amount)

    async def add_credits(
        self,
        uow: UnitOfWork,
        user_id: UUID,
        amount: float,
        pool: CreditPool | str = CreditPool.LEGACY,
    ) -> None:
        """Top up a pool (admin grants and purchases)."""
        await self.refund(uow, user_id, pool, amount)
