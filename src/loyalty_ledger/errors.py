"""Typed failures raised by the loyalty ledger.

Business-rule rejections subclass ``LedgerRuleViolation`` so callers can show
them to the member; ``StoreUnavailable`` marks a transient store outage that
is safe to retry. No failure leaves a partial mutation behind.
"""

from __future__ import annotations


class LedgerError(RuntimeError):
    """Base exception for loyalty ledger failures."""


class ConfigurationError(LedgerError):
    """Raised when the tier table or engine wiring is malformed."""


class StoreUnavailable(LedgerError):
    """Raised when the backing store cannot be reached; the call may be retried."""


class LedgerRuleViolation(LedgerError):
    """A request rejected by a ledger business rule."""

    code = "rule_violation"


class InvalidAmount(LedgerRuleViolation):
    """Raised for negative, non-finite or non-numeric point amounts."""

    code = "invalid_amount"

    def __init__(self, amount: object) -> None:
        super().__init__(f"Invalid amount: {amount!r}")
        self.amount = amount


class RewardNotFound(LedgerRuleViolation):
    code = "reward_not_found"

    def __init__(self, reward_id: str) -> None:
        super().__init__(f"Reward {reward_id} does not exist")
        self.reward_id = reward_id


class RewardInactive(LedgerRuleViolation):
    code = "reward_inactive"

    def __init__(self, reward_id: str) -> None:
        super().__init__(f"Reward {reward_id} is not available right now")
        self.reward_id = reward_id


class InsufficientPoints(LedgerRuleViolation):
    code = "insufficient_points"

    def __init__(self, account_id: str, *, required: int, available: int) -> None:
        super().__init__(f"Not enough points: {required} required, {available} available")
        self.account_id = account_id
        self.required = required
        self.available = available


class OutOfStock(LedgerRuleViolation):
    code = "out_of_stock"

    def __init__(self, reward_id: str) -> None:
        super().__init__(f"Reward {reward_id} is out of stock")
        self.reward_id = reward_id


class RedemptionLimitReached(LedgerRuleViolation):
    """Raised when an account has used up a reward's per-account redemption cap."""

    code = "redemption_limit_reached"

    def __init__(self, account_id: str, reward_id: str, *, limit: int) -> None:
        super().__init__(f"Reward {reward_id} can be redeemed at most {limit} times per account")
        self.account_id = account_id
        self.reward_id = reward_id
        self.limit = limit


__all__ = [
    "ConfigurationError",
    "InsufficientPoints",
    "InvalidAmount",
    "LedgerError",
    "LedgerRuleViolation",
    "OutOfStock",
    "RedemptionLimitReached",
    "RewardInactive",
    "RewardNotFound",
    "StoreUnavailable",
]
