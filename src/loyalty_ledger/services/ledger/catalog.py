"""Read access to loyalty rewards and the sole writer of reward stock."""

from __future__ import annotations

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.models.loyalty import LoyaltyReward


class RewardCatalog:
    """Catalog lookups plus the stock decrement used by redemption."""

    def __init__(self, session: AsyncSession) -> None:
        self._db = session

    async def get_reward(self, reward_id: str, *, for_update: bool = False) -> LoyaltyReward | None:
        stmt = select(LoyaltyReward).where(LoyaltyReward.id == reward_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_active_rewards(self) -> list[LoyaltyReward]:
        """Return active rewards ordered by cost."""

        stmt = (
            select(LoyaltyReward)
            .where(LoyaltyReward.is_active.is_(True))
            .order_by(LoyaltyReward.points_required.asc(), LoyaltyReward.id.asc())
        )
        result = await self._db.execute(stmt)
        rewards = list(result.scalars().all())
        logger.debug("Fetched loyalty rewards", count=len(rewards))
        return rewards

    async def decrement_stock(self, reward_id: str) -> bool:
        """Take one unit of stock.

        Unlimited rewards (``stock`` is NULL) are left untouched and report
        success; exhausted or missing rewards report False.
        """

        reward = await self.get_reward(reward_id)
        if reward is None:
            return False
        if reward.stock is None:
            return True

        stmt = (
            update(LoyaltyReward)
            .where(LoyaltyReward.id == reward_id, LoyaltyReward.stock > 0)
            .values(stock=LoyaltyReward.stock - 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.rowcount != 1:
            logger.warning("Reward stock exhausted", reward_id=reward_id)
            return False
        await self._db.refresh(reward, attribute_names=["stock"])
        logger.debug("Decremented reward stock", reward_id=reward_id, stock=reward.stock)
        return True


__all__ = ["RewardCatalog"]
