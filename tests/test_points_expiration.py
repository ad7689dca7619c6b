import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from loyalty_ledger.models.loyalty import LoyaltyPointLot, PointLotStatus, TransactionType
from loyalty_ledger.services.ledger import PointsSummary
from loyalty_ledger.workers.points_expiration import PointsExpirationWorker


async def _lots(session_factory, account_id: str) -> list[LoyaltyPointLot]:
    async with session_factory() as session:
        result = await session.execute(
            select(LoyaltyPointLot)
            .where(LoyaltyPointLot.account_id == account_id)
            .order_by(LoyaltyPointLot.sequence.asc())
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_redemption_consumes_oldest_points_first(ledger, clock, session_factory, add_reward) -> None:
    await add_reward("coffee", points_required=30)
    await ledger.earn_points("acct-1", "order-1", 100, "Order #1")
    clock.advance(days=10)
    await ledger.earn_points("acct-1", "order-2", 50, "Order #2")

    await ledger.redeem_reward("acct-1", "coffee")

    older, newer = await _lots(session_factory, "acct-1")
    assert older.remaining_points == 70
    assert older.status == PointLotStatus.OPEN
    assert newer.remaining_points == 50


@pytest.mark.asyncio
async def test_expiration_lapses_only_unused_points(ledger, clock, session_factory, add_reward) -> None:
    await add_reward("coffee", points_required=30)
    start = clock.now
    await ledger.earn_points("acct-1", "order-1", 100, "Order #1")
    clock.advance(days=10)
    await ledger.earn_points("acct-1", "order-2", 50, "Order #2")
    await ledger.redeem_reward("acct-1", "coffee")

    expired = await ledger.expire_points(reference_time=start + timedelta(days=366))

    assert [(record.type, record.points) for record in expired] == [(TransactionType.EXPIRED, -70)]
    assert await ledger.get_summary("acct-1") == PointsSummary(total=150, available=50, used=30, expired=70)

    # Running the sweep again at the same instant is a no-op.
    assert await ledger.expire_points(reference_time=start + timedelta(days=366)) == []

    later = await ledger.expire_points(reference_time=start + timedelta(days=400))
    assert [record.points for record in later] == [-50]
    assert await ledger.get_summary("acct-1") == PointsSummary(total=150, available=0, used=30, expired=120)

    lots = await _lots(session_factory, "acct-1")
    assert [lot.status for lot in lots] == [PointLotStatus.EXPIRED, PointLotStatus.EXPIRED]

    transactions = await ledger.list_transactions("acct-1")
    assert PointsSummary.fold(reversed(transactions)) == await ledger.get_summary("acct-1")


@pytest.mark.asyncio
async def test_fully_redeemed_lot_never_expires(ledger, clock, add_reward) -> None:
    await add_reward("meal", points_required=40)
    start = clock.now
    await ledger.earn_points("acct-1", "order-1", 40, "Order #1")
    await ledger.redeem_reward("acct-1", "meal")

    assert await ledger.expire_points(reference_time=start + timedelta(days=400)) == []
    assert await ledger.get_summary("acct-1") == PointsSummary(total=40, available=0, used=40, expired=0)


@pytest.mark.asyncio
async def test_expiration_before_deadline_does_nothing(ledger, clock) -> None:
    await ledger.award_bonus("acct-1", 25, "Welcome")

    assert await ledger.expire_points(reference_time=clock.now + timedelta(days=364)) == []
    assert (await ledger.get_summary("acct-1")).available == 25


@pytest.mark.asyncio
async def test_expiration_sweeps_each_account(ledger, clock, observability) -> None:
    await ledger.award_bonus("acct-1", 25, "Welcome")
    await ledger.award_bonus("acct-2", 35, "Welcome")

    expired = await ledger.expire_points(reference_time=clock.now + timedelta(days=365))

    assert sorted((record.account_id, record.points) for record in expired) == [("acct-1", -25), ("acct-2", -35)]
    snapshot = observability.snapshot()
    assert snapshot.expirations["transactions"] == 2
    assert snapshot.expirations["points"] == 60


@pytest.mark.asyncio
async def test_worker_run_once_summarizes_sweep(ledger, clock) -> None:
    await ledger.award_bonus("acct-1", 25, "Welcome")
    await ledger.earn_points("acct-1", "order-1", 10, "Order #1")
    await ledger.award_bonus("acct-2", 5, "Welcome")

    worker = PointsExpirationWorker(ledger, interval_seconds=1)
    summary = await worker.run_once(reference_time=clock.now + timedelta(days=400))

    assert summary == {"accounts": 2, "transactions": 3, "points": 40}


@pytest.mark.asyncio
async def test_worker_start_and_stop(ledger, clock, monkeypatch) -> None:
    clock.now = datetime(2020, 1, 1, tzinfo=timezone.utc)
    await ledger.award_bonus("acct-1", 25, "Welcome")
    clock.now = datetime(2022, 1, 1, tzinfo=timezone.utc)

    swept = asyncio.Event()
    expire_points = ledger.expire_points

    async def _expire_and_signal(**kwargs):
        try:
            return await expire_points(**kwargs)
        finally:
            swept.set()

    monkeypatch.setattr(ledger, "expire_points", _expire_and_signal)

    worker = PointsExpirationWorker(ledger, interval_seconds=60)
    worker.start()
    assert worker.is_running
    await asyncio.wait_for(swept.wait(), timeout=5)
    await worker.stop()

    assert not worker.is_running
    assert (await ledger.get_summary("acct-1")).expired == 25


@pytest.mark.asyncio
async def test_expired_transactions_are_stamped_when_written(ledger, clock) -> None:
    await ledger.award_bonus("acct-1", 25, "Welcome")
    clock.advance(days=30)

    expired = await ledger.expire_points(reference_time=clock.now + timedelta(days=1000))

    assert [record.created_at for record in expired] == [clock.now]
    assert [record.sequence for record in expired] == [2]
