from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import loyalty_ledger.models  # noqa: F401
from loyalty_ledger.db.base import Base
from loyalty_ledger.models.loyalty import LoyaltyReward, RewardCategory
from loyalty_ledger.observability.ledger import LedgerObservabilityStore
from loyalty_ledger.services.ledger import LedgerEngine


class FrozenClock:
    """Deterministic clock that tests advance by hand."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def observability() -> LedgerObservabilityStore:
    return LedgerObservabilityStore()


@pytest.fixture
def ledger(session_factory, clock, observability) -> LedgerEngine:
    return LedgerEngine(session_factory, observability=observability, clock=clock)


@pytest.fixture
def add_reward(session_factory):
    async def _add(
        reward_id: str,
        *,
        points_required: int,
        name: str | None = None,
        category: RewardCategory = RewardCategory.FOOD,
        is_active: bool = True,
        stock: int | None = None,
        max_redemptions: int | None = None,
    ) -> None:
        async with session_factory() as session:
            session.add(
                LoyaltyReward(
                    id=reward_id,
                    name=name or reward_id.replace("-", " ").title(),
                    points_required=points_required,
                    category=category,
                    is_active=is_active,
                    stock=stock,
                    max_redemptions=max_redemptions,
                )
            )
            await session.commit()

    return _add
