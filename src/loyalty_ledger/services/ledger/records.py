"""Immutable views handed back to ledger callers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable
from uuid import UUID

from loyalty_ledger.models.loyalty import (
    LoyaltyAccount,
    LoyaltyReward,
    LoyaltyTransaction,
    RewardCategory,
    TransactionType,
)


# Largest balance a BIGINT column can hold.
MAX_POINTS = 2**63 - 1


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from stores without tz support."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class SummaryDelta:
    """Signed change applied to a points summary."""

    total: int = 0
    available: int = 0
    used: int = 0
    expired: int = 0


@dataclass(frozen=True, slots=True)
class PointsSummary:
    """Point balances for an account; ``total == available + used + expired``."""

    total: int = 0
    available: int = 0
    used: int = 0
    expired: int = 0

    @property
    def is_consistent(self) -> bool:
        values = (self.total, self.available, self.used, self.expired)
        return all(value >= 0 for value in values) and self.total == self.available + self.used + self.expired

    def apply(self, delta: SummaryDelta) -> "PointsSummary":
        updated = PointsSummary(
            total=self.total + delta.total,
            available=self.available + delta.available,
            used=self.used + delta.used,
            expired=self.expired + delta.expired,
        )
        if not updated.is_consistent:
            raise ValueError(f"Summary delta {delta} would break ledger balances {self}")
        return updated

    @classmethod
    def from_account(cls, account: LoyaltyAccount | None) -> "PointsSummary":
        if account is None:
            return cls()
        return cls(
            total=int(account.total_points or 0),
            available=int(account.available_points or 0),
            used=int(account.used_points or 0),
            expired=int(account.expired_points or 0),
        )

    @classmethod
    def fold(cls, transactions: Iterable["TransactionRecord"]) -> "PointsSummary":
        summary = cls()
        for transaction in transactions:
            summary = summary.apply(delta_for(transaction.type, transaction.points))
        return summary


def delta_for(transaction_type: TransactionType, points: int) -> SummaryDelta:
    """Summary change implied by a transaction with signed ``points``."""

    match transaction_type:
        case TransactionType.EARNED | TransactionType.BONUS:
            return SummaryDelta(total=points, available=points)
        case TransactionType.REDEEMED:
            return SummaryDelta(available=points, used=-points)
        case TransactionType.EXPIRED:
            return SummaryDelta(available=points, expired=-points)


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    id: UUID
    account_id: str
    sequence: int
    type: TransactionType
    points: int
    description: str
    created_at: datetime
    related_order_id: str | None = None
    related_reward_id: str | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_model(cls, row: LoyaltyTransaction) -> "TransactionRecord":
        return cls(
            id=row.id,
            account_id=row.account_id,
            sequence=int(row.sequence),
            type=row.transaction_type,
            points=int(row.points),
            description=row.description or "",
            created_at=as_utc(row.created_at),
            related_order_id=row.related_order_id,
            related_reward_id=row.related_reward_id,
            expires_at=as_utc(row.expires_at),
        )


@dataclass(frozen=True, slots=True)
class RewardRecord:
    id: str
    name: str
    points_required: int
    category: RewardCategory
    is_active: bool
    description: str | None = None
    stock: int | None = None
    max_redemptions: int | None = None

    @property
    def in_stock(self) -> bool:
        return self.stock is None or self.stock > 0

    @classmethod
    def from_model(cls, row: LoyaltyReward) -> "RewardRecord":
        return cls(
            id=row.id,
            name=row.name,
            points_required=int(row.points_required),
            category=row.category,
            is_active=bool(row.is_active),
            description=row.description,
            stock=int(row.stock) if row.stock is not None else None,
            max_redemptions=int(row.max_redemptions) if row.max_redemptions is not None else None,
        )


__all__ = [
    "MAX_POINTS",
    "PointsSummary",
    "RewardRecord",
    "SummaryDelta",
    "TransactionRecord",
    "as_utc",
    "delta_for",
]
