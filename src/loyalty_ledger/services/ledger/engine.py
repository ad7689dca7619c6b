"""Loyalty ledger engine: earning, redemption, expiration and tier lookups."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from pathlib import Path
from typing import AsyncIterator, Callable
from uuid import uuid4

from loguru import logger
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty_ledger.core.settings import Settings
from loyalty_ledger.db.session import create_session_factory
from loyalty_ledger.domain.tiers import DEFAULT_TIERS, Tier, TierCalculator, TierProgress, load_tier_table
from loyalty_ledger.errors import (
    InsufficientPoints,
    InvalidAmount,
    LedgerRuleViolation,
    OutOfStock,
    RedemptionLimitReached,
    RewardInactive,
    RewardNotFound,
    StoreUnavailable,
)
from loyalty_ledger.models.loyalty import LoyaltyAccount, LoyaltyTransaction, PointLotStatus, TransactionType
from loyalty_ledger.observability.ledger import LedgerObservabilityStore, get_ledger_observability

from .catalog import RewardCatalog
from .locks import ResourceLocks
from .records import MAX_POINTS, PointsSummary, RewardRecord, TransactionRecord, as_utc, delta_for
from .store import LedgerStore

Clock = Callable[[], datetime]

DEFAULT_POINTS_TTL = timedelta(days=365)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_amount(value: object) -> Decimal:
    """Return ``value`` as a finite, non-negative Decimal or raise ``InvalidAmount``."""

    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise InvalidAmount(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise InvalidAmount(value) from exc
    if not amount.is_finite() or amount < 0 or amount > MAX_POINTS:
        raise InvalidAmount(value)
    return amount


class LedgerEngine:
    """Coordinates the loyalty ledger over an injected session factory.

    Mutations hold the per-account (and per-reward) locks for their whole
    read-check-write sequence and run in a single database transaction that
    also row-locks the account and reward, so concurrent callers in this
    process or in other processes sharing the database are serialized.
    Reads take no engine locks and only observe committed state.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        tiers: TierCalculator | None = None,
        points_ttl: timedelta = DEFAULT_POINTS_TTL,
        dedupe_order_earnings: bool = True,
        observability: LedgerObservabilityStore | None = None,
        clock: Clock | None = None,
    ) -> None:
        if points_ttl <= timedelta(0):
            raise ValueError("points_ttl must be positive")
        self._session_factory = session_factory
        self._tiers = tiers or TierCalculator(DEFAULT_TIERS)
        self._points_ttl = points_ttl
        self._dedupe_order_earnings = dedupe_order_earnings
        self._observability = observability or get_ledger_observability()
        self._clock = clock or _utcnow
        self._locks = ResourceLocks()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> "LedgerEngine":
        """Build an engine from process settings; a bad tier table refuses to start."""

        tiers: tuple[Tier, ...] = DEFAULT_TIERS
        if settings.tier_table_path:
            tiers = load_tier_table(Path(settings.tier_table_path))
        return cls(
            session_factory or create_session_factory(settings.database_url),
            tiers=TierCalculator(tiers),
            points_ttl=timedelta(days=settings.points_expiry_days),
            dedupe_order_earnings=settings.dedupe_order_earnings,
        )

    @property
    def tiers(self) -> TierCalculator:
        return self._tiers

    @property
    def locks(self) -> ResourceLocks:
        return self._locks

    def _now(self) -> datetime:
        return as_utc(self._clock())

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Open a session and a database transaction; commit on success, roll back otherwise."""

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
            self._observability.record_store_failure(operation)
            logger.error("Loyalty store unavailable", operation=operation, error=str(exc))
            raise StoreUnavailable(f"Loyalty store unavailable during {operation}") from exc
        except DBAPIError as exc:
            if not exc.connection_invalidated:
                raise
            self._observability.record_store_failure(operation)
            logger.error("Loyalty store connection lost", operation=operation, error=str(exc))
            raise StoreUnavailable(f"Loyalty store connection lost during {operation}") from exc

    # ------------------------------------------------------------------
    # Reads

    async def get_summary(self, account_id: str) -> PointsSummary:
        async with self._transaction("get_summary") as session:
            return await LedgerStore(session).get_summary(account_id)

    async def list_transactions(self, account_id: str, *, limit: int | None = None) -> list[TransactionRecord]:
        async with self._transaction("list_transactions") as session:
            rows = await LedgerStore(session).list_transactions(account_id, limit=limit)
            return [TransactionRecord.from_model(row) for row in rows]

    async def current_tier(self, account_id: str) -> Tier:
        summary = await self.get_summary(account_id)
        return self._tiers.current_tier(summary.total)

    async def tier_progress(self, account_id: str) -> TierProgress:
        summary = await self.get_summary(account_id)
        return self._tiers.tier_progress(summary.total)

    async def get_available_rewards(self, account_id: str) -> list[RewardRecord]:
        """Rewards the account could redeem right now, cheapest first.

        A point-in-time view: redemption re-checks everything atomically.
        """

        async with self._transaction("get_available_rewards") as session:
            summary = await LedgerStore(session).get_summary(account_id)
            rewards = await RewardCatalog(session).list_active_rewards()
            records = [RewardRecord.from_model(reward) for reward in rewards]
            return [record for record in records if record.in_stock and summary.available >= record.points_required]

    # ------------------------------------------------------------------
    # Mutations

    async def earn_points(
        self,
        account_id: str,
        order_id: str,
        order_amount: int | float | Decimal,
        description: str,
    ) -> TransactionRecord:
        """Credit points for a completed order at the account's current tier multiplier."""

        amount = _coerce_amount(order_amount)

        async with self._locks.hold(accounts=[account_id]):
            async with self._transaction("earn_points") as session:
                store = LedgerStore(session)
                account = await store.ensure_account(account_id)

                if self._dedupe_order_earnings:
                    existing = await store.find_order_earning(account_id, order_id)
                    if existing is not None:
                        self._observability.record_duplicate_order()
                        logger.warning(
                            "Ignoring duplicate order earning",
                            account_id=account_id,
                            order_id=order_id,
                            transaction_id=str(existing.id),
                        )
                        return TransactionRecord.from_model(existing)

                tier = self._tiers.current_tier(int(account.total_points or 0))
                earned = int((amount * tier.multiplier).to_integral_value(rounding=ROUND_FLOOR))
                transaction = await self._credit(
                    store,
                    account,
                    TransactionType.EARNED,
                    earned,
                    description,
                    related_order_id=order_id,
                )

        self._observability.record_credit(TransactionType.EARNED.value, earned)
        logger.info(
            "Recorded loyalty earning",
            account_id=account_id,
            order_id=order_id,
            points=earned,
            tier=tier.id,
            multiplier=str(tier.multiplier),
        )
        return transaction

    async def award_bonus(self, account_id: str, points: int, description: str) -> TransactionRecord:
        """Credit bonus points as-is, without a tier multiplier."""

        if isinstance(points, bool) or not isinstance(points, int) or not 0 < points <= MAX_POINTS:
            raise InvalidAmount(points)

        async with self._locks.hold(accounts=[account_id]):
            async with self._transaction("award_bonus") as session:
                store = LedgerStore(session)
                account = await store.ensure_account(account_id)
                transaction = await self._credit(store, account, TransactionType.BONUS, points, description)

        self._observability.record_credit(TransactionType.BONUS.value, points)
        logger.info("Awarded loyalty bonus", account_id=account_id, points=points)
        return transaction

    async def redeem_reward(self, account_id: str, reward_id: str) -> TransactionRecord:
        """Exchange available points for one unit of a reward.

        Balance, stock and cap checks, the summary update, the stock decrement
        and the log append commit together or not at all.
        """

        try:
            async with self._locks.hold(accounts=[account_id], rewards=[reward_id]):
                async with self._transaction("redeem_reward") as session:
                    record, cost = await self._redeem(session, account_id, reward_id)
        except LedgerRuleViolation as exc:
            self._observability.record_redemption(exc.code)
            logger.warning(
                "Rejected loyalty redemption",
                account_id=account_id,
                reward_id=reward_id,
                reason=exc.code,
            )
            raise

        self._observability.record_redemption("success", cost)
        logger.info(
            "Redeemed loyalty reward",
            account_id=account_id,
            reward_id=reward_id,
            points=cost,
            transaction_id=str(record.id),
        )
        return record

    async def _redeem(self, session: AsyncSession, account_id: str, reward_id: str) -> tuple[TransactionRecord, int]:
        store = LedgerStore(session)
        catalog = RewardCatalog(session)

        # Row locks follow the in-process order: account first, then reward.
        account = await store.get_account(account_id, for_update=True)
        reward = await catalog.get_reward(reward_id, for_update=True)

        if reward is None:
            raise RewardNotFound(reward_id)
        if not reward.is_active:
            raise RewardInactive(reward_id)

        cost = int(reward.points_required)
        summary = PointsSummary.from_account(account)
        if account is None or summary.available < cost:
            raise InsufficientPoints(account_id, required=cost, available=summary.available)
        if reward.stock is not None and int(reward.stock) <= 0:
            raise OutOfStock(reward_id)
        if reward.max_redemptions is not None:
            redeemed = await store.count_redemptions(account_id, reward_id)
            if redeemed >= int(reward.max_redemptions):
                raise RedemptionLimitReached(account_id, reward_id, limit=int(reward.max_redemptions))

        if not await catalog.decrement_stock(reward_id):
            raise OutOfStock(reward_id)

        transaction = LoyaltyTransaction(
            id=uuid4(),
            transaction_type=TransactionType.REDEEMED,
            points=-cost,
            description=f"Redeemed: {reward.name}",
            related_reward_id=reward_id,
            created_at=self._now(),
        )
        await store.append_and_update_summary(
            account, transaction, delta_for(TransactionType.REDEEMED, -cost)
        )
        await store.consume_lots(account_id, cost)
        return TransactionRecord.from_model(transaction), cost

    async def expire_points(self, *, reference_time: datetime | None = None) -> list[TransactionRecord]:
        """Lapse every credited lot whose expiry has passed, one account at a time.

        Each account commits on its own under its account lock; an account
        that fails is left untouched and the error propagates after the
        accounts already processed stay committed.
        """

        horizon = as_utc(reference_time) if reference_time else self._now()
        async with self._transaction("expire_points") as session:
            account_ids = await LedgerStore(session).accounts_with_expired_lots(horizon)

        expired: list[TransactionRecord] = []
        for account_id in account_ids:
            expired.extend(await self._expire_account(account_id, horizon))

        logger.info(
            "Loyalty expiration sweep completed",
            accounts=len(account_ids),
            transactions=len(expired),
            points=sum(-record.points for record in expired),
        )
        return expired

    async def _expire_account(self, account_id: str, horizon: datetime) -> list[TransactionRecord]:
        records: list[TransactionRecord] = []
        async with self._locks.hold(accounts=[account_id]):
            async with self._transaction("expire_points") as session:
                store = LedgerStore(session)
                account = await store.get_account(account_id, for_update=True)
                if account is None:
                    logger.warning("Expired lots reference a missing account", account_id=account_id)
                    return records

                for lot in await store.list_expired_lots(account_id, horizon):
                    lapsed = min(lot.remaining_points, int(account.available_points or 0))
                    if lapsed > 0:
                        transaction = LoyaltyTransaction(
                            id=uuid4(),
                            transaction_type=TransactionType.EXPIRED,
                            points=-lapsed,
                            description="Points expired",
                            created_at=self._now(),
                        )
                        await store.append_and_update_summary(
                            account, transaction, delta_for(TransactionType.EXPIRED, -lapsed)
                        )
                        records.append(TransactionRecord.from_model(transaction))
                    lot.consumed_points = int(lot.points)
                    lot.status = PointLotStatus.EXPIRED
                await session.flush()

        for record in records:
            self._observability.record_expiration(-record.points)
        return records

    async def _credit(
        self,
        store: LedgerStore,
        account: LoyaltyAccount,
        transaction_type: TransactionType,
        points: int,
        description: str,
        *,
        related_order_id: str | None = None,
    ) -> TransactionRecord:
        if not transaction_type.is_credit:
            raise ValueError(f"{transaction_type.value} is not a credit")
        if int(account.total_points or 0) + points > MAX_POINTS:
            raise InvalidAmount(points)

        now = self._now()
        transaction = LoyaltyTransaction(
            id=uuid4(),
            transaction_type=transaction_type,
            points=points,
            description=description,
            related_order_id=related_order_id,
            created_at=now,
            expires_at=now + self._points_ttl,
        )
        await store.append_and_update_summary(account, transaction, delta_for(transaction_type, points))
        if points > 0:
            await store.open_lot(transaction)
        return TransactionRecord.from_model(transaction)


__all__ = ["LedgerEngine"]
