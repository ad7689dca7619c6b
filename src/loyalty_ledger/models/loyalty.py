"""Loyalty ledger tables: accounts, transactions, point lots and rewards."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    true,
)
from sqlalchemy.orm import relationship

from loyalty_ledger.db.base import Base


class TransactionType(str, Enum):
    """Kinds of point-affecting ledger transactions."""

    EARNED = "earned"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    BONUS = "bonus"

    @property
    def is_credit(self) -> bool:
        return self in (TransactionType.EARNED, TransactionType.BONUS)


class PointLotStatus(str, Enum):
    """Lifecycle of a credited batch of points."""

    OPEN = "open"
    CONSUMED = "consumed"
    EXPIRED = "expired"


class RewardCategory(str, Enum):
    """Catalog reward categories."""

    FOOD = "food"
    DISCOUNT = "discount"
    FREEBIE = "freebie"
    UPGRADE = "upgrade"


class LoyaltyAccount(Base):
    """Materialized points summary for a loyalty account."""

    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        CheckConstraint("total_points >= 0", name="ck_loyalty_accounts_total_non_negative"),
        CheckConstraint("available_points >= 0", name="ck_loyalty_accounts_available_non_negative"),
        CheckConstraint("used_points >= 0", name="ck_loyalty_accounts_used_non_negative"),
        CheckConstraint("expired_points >= 0", name="ck_loyalty_accounts_expired_non_negative"),
        CheckConstraint(
            "total_points = available_points + used_points + expired_points",
            name="ck_loyalty_accounts_balanced",
        ),
    )

    id = Column(String, primary_key=True)
    total_points = Column(BigInteger, nullable=False, default=0, server_default="0")
    available_points = Column(BigInteger, nullable=False, default=0, server_default="0")
    used_points = Column(BigInteger, nullable=False, default=0, server_default="0")
    expired_points = Column(BigInteger, nullable=False, default=0, server_default="0")
    transaction_count = Column(BigInteger, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    transactions = relationship("LoyaltyTransaction", back_populates="account", cascade="all, delete-orphan")
    lots = relationship("LoyaltyPointLot", back_populates="account", cascade="all, delete-orphan")


class LoyaltyTransaction(Base):
    """Append-only ledger entry. Rows are never updated once flushed."""

    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        UniqueConstraint("account_id", "sequence", name="uq_loyalty_transactions_account_sequence"),
        Index("ix_loyalty_transactions_account_order", "account_id", "related_order_id"),
        Index("ix_loyalty_transactions_account_reward", "account_id", "related_reward_id"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(String, ForeignKey("loyalty_accounts.id", ondelete="CASCADE"), nullable=False)
    sequence = Column(BigInteger, nullable=False)
    transaction_type = Column(SqlEnum(TransactionType, name="loyalty_transaction_type"), nullable=False)
    points = Column(BigInteger, nullable=False)
    description = Column(String, nullable=False, default="")
    related_order_id = Column(String, nullable=True)
    related_reward_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    account = relationship("LoyaltyAccount", back_populates="transactions")


class LoyaltyPointLot(Base):
    """Unconsumed remainder of a credit transaction, used for expiration."""

    __tablename__ = "loyalty_point_lots"
    __table_args__ = (
        CheckConstraint("consumed_points >= 0", name="ck_loyalty_point_lots_consumed_non_negative"),
        CheckConstraint("consumed_points <= points", name="ck_loyalty_point_lots_consumed_bounded"),
        Index("ix_loyalty_point_lots_status_expires", "status", "expires_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(String, ForeignKey("loyalty_accounts.id", ondelete="CASCADE"), nullable=False)
    transaction_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("loyalty_transactions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    sequence = Column(BigInteger, nullable=False)
    points = Column(BigInteger, nullable=False)
    consumed_points = Column(BigInteger, nullable=False, default=0, server_default="0")
    expires_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        SqlEnum(PointLotStatus, name="loyalty_point_lot_status"),
        nullable=False,
        default=PointLotStatus.OPEN,
        server_default=PointLotStatus.OPEN.name,
    )
    created_at = Column(DateTime(timezone=True), nullable=False)

    account = relationship("LoyaltyAccount", back_populates="lots")

    @property
    def remaining_points(self) -> int:
        return max(int(self.points or 0) - int(self.consumed_points or 0), 0)


class LoyaltyReward(Base):
    """Redeemable catalog reward. Authored and restocked outside the engine."""

    __tablename__ = "loyalty_rewards"
    __table_args__ = (
        CheckConstraint("points_required > 0", name="ck_loyalty_rewards_cost_positive"),
        CheckConstraint("stock IS NULL OR stock >= 0", name="ck_loyalty_rewards_stock_non_negative"),
        CheckConstraint(
            "max_redemptions IS NULL OR max_redemptions > 0",
            name="ck_loyalty_rewards_cap_positive",
        ),
    )

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    points_required = Column(BigInteger, nullable=False)
    category = Column(SqlEnum(RewardCategory, name="loyalty_reward_category"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    stock = Column(BigInteger, nullable=True)
    max_redemptions = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
