import warnings
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy.exc import SAWarning

from loyalty_ledger.errors import StoreUnavailable
from loyalty_ledger.models.loyalty import LoyaltyAccount, LoyaltyTransaction, PointLotStatus, TransactionType
from loyalty_ledger.services.ledger import LedgerStore, PointsSummary, SummaryDelta, delta_for

NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _transaction(transaction_type: TransactionType, points: int, **kwargs) -> LoyaltyTransaction:
    return LoyaltyTransaction(
        id=uuid4(),
        transaction_type=transaction_type,
        points=points,
        description=kwargs.pop("description", transaction_type.value),
        created_at=kwargs.pop("created_at", NOW),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_append_assigns_sequence_and_updates_summary(session_factory) -> None:
    async with session_factory() as session:
        async with session.begin():
            store = LedgerStore(session)
            account = await store.ensure_account("acct-1")
            for points in (10, 20):
                await store.append_and_update_summary(
                    account,
                    _transaction(TransactionType.EARNED, points),
                    delta_for(TransactionType.EARNED, points),
                )
            await store.append_and_update_summary(
                account,
                _transaction(TransactionType.REDEEMED, -5),
                delta_for(TransactionType.REDEEMED, -5),
            )

    async with session_factory() as session:
        store = LedgerStore(session)
        assert await store.get_summary("acct-1") == PointsSummary(total=30, available=25, used=5)
        transactions = await store.list_transactions("acct-1")
        assert [row.sequence for row in transactions] == [3, 2, 1]
        assert [row.points for row in transactions] == [-5, 20, 10]


@pytest.mark.asyncio
async def test_append_rejects_mismatched_delta(session_factory) -> None:
    async with session_factory() as session:
        async with session.begin():
            store = LedgerStore(session)
            account = await store.ensure_account("acct-1")
            with pytest.raises(ValueError):
                await store.append_and_update_summary(
                    account,
                    _transaction(TransactionType.EARNED, 10),
                    SummaryDelta(total=10, available=5, used=5),
                )
            assert account.transaction_count == 0


@pytest.mark.asyncio
async def test_append_rejects_overdraw(session_factory) -> None:
    async with session_factory() as session:
        async with session.begin():
            store = LedgerStore(session)
            account = await store.ensure_account("acct-1")
            with pytest.raises(ValueError):
                await store.append_and_update_summary(
                    account,
                    _transaction(TransactionType.REDEEMED, -1),
                    delta_for(TransactionType.REDEEMED, -1),
                )


@pytest.mark.asyncio
async def test_consume_lots_is_fifo_by_expiry(session_factory) -> None:
    async with session_factory() as session:
        async with session.begin():
            store = LedgerStore(session)
            account = await store.ensure_account("acct-1")
            late = _transaction(TransactionType.EARNED, 40, expires_at=NOW + timedelta(days=30))
            early = _transaction(TransactionType.BONUS, 25, expires_at=NOW + timedelta(days=5))
            for transaction in (late, early):
                await store.append_and_update_summary(
                    account, transaction, delta_for(transaction.transaction_type, int(transaction.points))
                )
                await store.open_lot(transaction)

            touched = await store.consume_lots("acct-1", 30)

            assert [lot.transaction_id for lot in touched] == [early.id, late.id]
            assert touched[0].status == PointLotStatus.CONSUMED
            assert touched[1].remaining_points == 35


@pytest.mark.asyncio
async def test_open_lot_requires_expiring_credit(session_factory) -> None:
    async with session_factory() as session:
        async with session.begin():
            store = LedgerStore(session)
            account = await store.ensure_account("acct-1")
            transaction = _transaction(TransactionType.EARNED, 10)
            await store.append_and_update_summary(account, transaction, delta_for(TransactionType.EARNED, 10))
            with pytest.raises(ValueError):
                await store.open_lot(transaction)


@pytest.mark.asyncio
async def test_expired_lot_queries(session_factory) -> None:
    async with session_factory() as session:
        async with session.begin():
            store = LedgerStore(session)
            for account_id, days in (("acct-b", 1), ("acct-a", 2), ("acct-c", 90)):
                account = await store.ensure_account(account_id)
                transaction = _transaction(TransactionType.EARNED, 10, expires_at=NOW + timedelta(days=days))
                await store.append_and_update_summary(account, transaction, delta_for(TransactionType.EARNED, 10))
                await store.open_lot(transaction)

    async with session_factory() as session:
        store = LedgerStore(session)
        horizon = NOW + timedelta(days=10)
        assert await store.accounts_with_expired_lots(horizon) == ["acct-a", "acct-b"]
        assert len(await store.list_expired_lots("acct-a", horizon)) == 1
        assert await store.list_expired_lots("acct-c", horizon) == []


@pytest.mark.asyncio
async def test_counts_and_order_lookup(session_factory) -> None:
    async with session_factory() as session:
        async with session.begin():
            store = LedgerStore(session)
            account = await store.ensure_account("acct-1")
            earned = _transaction(TransactionType.EARNED, 50, related_order_id="order-1")
            await store.append_and_update_summary(account, earned, delta_for(TransactionType.EARNED, 50))
            for _ in range(2):
                await store.append_and_update_summary(
                    account,
                    _transaction(TransactionType.REDEEMED, -10, related_reward_id="coffee"),
                    delta_for(TransactionType.REDEEMED, -10),
                )

        found = await store.find_order_earning("acct-1", "order-1")
        assert found is not None and found.id == earned.id
        assert await store.find_order_earning("acct-1", "order-2") is None
        assert await store.count_redemptions("acct-1", "coffee") == 2
        assert await store.count_redemptions("acct-1", "tea") == 0


@pytest.mark.asyncio
async def test_account_created_elsewhere_surfaces_as_store_unavailable(session_factory, monkeypatch) -> None:
    async with session_factory() as session:
        session.add(LoyaltyAccount(id="acct-1"))
        await session.commit()

    async with session_factory() as session:
        store = LedgerStore(session)

        async def _stale_lookup(account_id, *, for_update=False):
            return None

        monkeypatch.setattr(store, "get_account", _stale_lookup)
        with pytest.raises(StoreUnavailable):
            async with session.begin():
                await store.ensure_account("acct-1")


@pytest.mark.asyncio
async def test_expired_lot_accounts_query_is_warning_free(session_factory) -> None:
    async with session_factory() as session:
        async with session.begin():
            store = LedgerStore(session)
            account = await store.ensure_account("acct-1")
            for days in (1, 2):
                transaction = _transaction(TransactionType.EARNED, 10, expires_at=NOW + timedelta(days=days))
                await store.append_and_update_summary(account, transaction, delta_for(TransactionType.EARNED, 10))
                await store.open_lot(transaction)

    async with session_factory() as session:
        with warnings.catch_warnings():
            warnings.simplefilter("error", SAWarning)
            accounts = await LedgerStore(session).accounts_with_expired_lots(NOW + timedelta(days=10))

    assert accounts == ["acct-1"]


@pytest.mark.asyncio
async def test_open_lot_rejects_debits(session_factory) -> None:
    async with session_factory() as session:
        async with session.begin():
            store = LedgerStore(session)
            account = await store.ensure_account("acct-1")
            await store.append_and_update_summary(
                account, _transaction(TransactionType.EARNED, 20), delta_for(TransactionType.EARNED, 20)
            )
            redeemed = _transaction(TransactionType.REDEEMED, -5, expires_at=NOW + timedelta(days=5))
            await store.append_and_update_summary(account, redeemed, delta_for(TransactionType.REDEEMED, -5))
            with pytest.raises(ValueError):
                await store.open_lot(redeemed)
