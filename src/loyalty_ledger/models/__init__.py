"""SQLAlchemy models package."""

from .loyalty import (  # noqa: F401
    LoyaltyAccount,
    LoyaltyPointLot,
    LoyaltyReward,
    LoyaltyTransaction,
    PointLotStatus,
    RewardCategory,
    TransactionType,
)

__all__ = [
    "LoyaltyAccount",
    "LoyaltyPointLot",
    "LoyaltyReward",
    "LoyaltyTransaction",
    "PointLotStatus",
    "RewardCategory",
    "TransactionType",
]
