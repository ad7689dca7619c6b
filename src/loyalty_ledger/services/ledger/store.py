"""Append-only loyalty transaction log with a materialized points summary.

Every method runs inside the caller's database transaction. The engine opens
that transaction, takes its locks and commits; the store never commits on its
own, so a rejected or failed operation rolls back as a single unit.
"""

from __future__ import annotations

from datetime import datetime

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.errors import StoreUnavailable
from loyalty_ledger.models.loyalty import (
    LoyaltyAccount,
    LoyaltyPointLot,
    LoyaltyTransaction,
    PointLotStatus,
    TransactionType,
)

from .records import PointsSummary, SummaryDelta, delta_for


class LedgerStore:
    """Persistence primitives for ledger accounts, transactions and point lots."""

    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    async def get_account(self, account_id: str, *, for_update: bool = False) -> LoyaltyAccount | None:
        stmt = select(LoyaltyAccount).where(LoyaltyAccount.id == account_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure_account(self, account_id: str) -> LoyaltyAccount:
        """Fetch the locked account row, creating an empty one on first credit."""

        account = await self.get_account(account_id, for_update=True)
        if account is not None:
            return account

        account = LoyaltyAccount(
            id=account_id,
            total_points=0,
            available_points=0,
            used_points=0,
            expired_points=0,
            transaction_count=0,
        )
        self._db.add(account)
        try:
            await self._db.flush()
        except IntegrityError as exc:
            # Another process created the row between our read and insert.
            logger.warning("Detected race when creating loyalty account", account_id=account_id)
            raise StoreUnavailable(f"Account {account_id} was created concurrently, retry") from exc
        logger.info("Created loyalty account", account_id=account_id)
        return account

    async def get_summary(self, account_id: str, *, for_update: bool = False) -> PointsSummary:
        account = await self.get_account(account_id, for_update=for_update)
        return PointsSummary.from_account(account)

    async def append_and_update_summary(
        self,
        account: LoyaltyAccount,
        transaction: LoyaltyTransaction,
        delta: SummaryDelta,
    ) -> LoyaltyTransaction:
        """Append ``transaction`` and apply ``delta`` to the account as one unit.

        ``account`` must be the row locked by the current transaction. The
        delta has to be exactly the one implied by the transaction type and
        points, which keeps the materialized summary equal to the log fold.
        """

        expected = delta_for(transaction.transaction_type, int(transaction.points))
        if delta != expected:
            raise ValueError(f"Delta {delta} does not match {transaction.transaction_type.value} of {transaction.points}")

        updated = PointsSummary.from_account(account).apply(delta)

        sequence = int(account.transaction_count or 0) + 1
        transaction.account_id = account.id
        transaction.sequence = sequence

        account.total_points = updated.total
        account.available_points = updated.available
        account.used_points = updated.used
        account.expired_points = updated.expired
        account.transaction_count = sequence

        self._db.add(transaction)
        await self._db.flush()
        logger.debug(
            "Appended loyalty transaction",
            account_id=account.id,
            sequence=sequence,
            transaction_type=transaction.transaction_type.value,
            points=int(transaction.points),
        )
        return transaction

    async def list_transactions(self, account_id: str, *, limit: int | None = None) -> list[LoyaltyTransaction]:
        """Return the account's transactions, newest commit first."""

        stmt = (
            select(LoyaltyTransaction)
            .where(LoyaltyTransaction.account_id == account_id)
            .order_by(LoyaltyTransaction.sequence.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def find_order_earning(self, account_id: str, order_id: str) -> LoyaltyTransaction | None:
        stmt = (
            select(LoyaltyTransaction)
            .where(
                LoyaltyTransaction.account_id == account_id,
                LoyaltyTransaction.related_order_id == order_id,
                LoyaltyTransaction.transaction_type == TransactionType.EARNED,
            )
            .order_by(LoyaltyTransaction.sequence.asc())
            .limit(1)
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def count_redemptions(self, account_id: str, reward_id: str) -> int:
        stmt = select(func.count(LoyaltyTransaction.id)).where(
            LoyaltyTransaction.account_id == account_id,
            LoyaltyTransaction.related_reward_id == reward_id,
            LoyaltyTransaction.transaction_type == TransactionType.REDEEMED,
        )
        result = await self._db.execute(stmt)
        return int(result.scalar_one() or 0)

    async def open_lot(self, transaction: LoyaltyTransaction) -> LoyaltyPointLot:
        """Track the credited points of ``transaction`` until used or lapsed."""

        credit = transaction.transaction_type.is_credit
        if not credit or transaction.expires_at is None or int(transaction.points) <= 0:
            raise ValueError("Only expiring credits with positive points open a lot")

        lot = LoyaltyPointLot(
            account_id=transaction.account_id,
            transaction_id=transaction.id,
            sequence=transaction.sequence,
            points=int(transaction.points),
            consumed_points=0,
            expires_at=transaction.expires_at,
            status=PointLotStatus.OPEN,
            created_at=transaction.created_at,
        )
        self._db.add(lot)
        await self._db.flush()
        return lot

    async def consume_lots(self, account_id: str, points: int) -> list[LoyaltyPointLot]:
        """Consume ``points`` from open lots, soonest expiry first (FIFO)."""

        remaining = points
        touched: list[LoyaltyPointLot] = []
        if remaining <= 0:
            return touched

        stmt = (
            select(LoyaltyPointLot)
            .where(
                LoyaltyPointLot.account_id == account_id,
                LoyaltyPointLot.status == PointLotStatus.OPEN,
            )
            .order_by(LoyaltyPointLot.expires_at.asc(), LoyaltyPointLot.sequence.asc())
            .with_for_update()
        )
        result = await self._db.execute(stmt)
        for lot in result.scalars().all():
            take = min(lot.remaining_points, remaining)
            lot.consumed_points = int(lot.consumed_points or 0) + take
            if lot.remaining_points == 0:
                lot.status = PointLotStatus.CONSUMED
            touched.append(lot)
            remaining -= take
            if remaining <= 0:
                break

        if remaining > 0:
            logger.warning(
                "Redemption exceeded tracked point lots",
                account_id=account_id,
                untracked_points=remaining,
            )
        await self._db.flush()
        return touched

    async def list_expired_lots(self, account_id: str, reference_time: datetime) -> list[LoyaltyPointLot]:
        stmt = (
            select(LoyaltyPointLot)
            .where(
                LoyaltyPointLot.account_id == account_id,
                LoyaltyPointLot.status == PointLotStatus.OPEN,
                LoyaltyPointLot.expires_at <= reference_time,
            )
            .order_by(LoyaltyPointLot.expires_at.asc(), LoyaltyPointLot.sequence.asc())
            .with_for_update()
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def accounts_with_expired_lots(self, reference_time: datetime) -> list[str]:
        stmt = (
            select(LoyaltyPointLot.account_id)
            .where(
                LoyaltyPointLot.status == PointLotStatus.OPEN,
                LoyaltyPointLot.expires_at <= reference_time,
            )
            .distinct()
            .order_by(LoyaltyPointLot.account_id.asc())
        )
        result = await self._db.execute(stmt)
        return [str(account_id) for account_id in result.scalars().all()]


__all__ = ["LedgerStore"]
