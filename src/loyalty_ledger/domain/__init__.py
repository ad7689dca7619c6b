"""Pure domain configuration for the ledger."""

from .tiers import (  # noqa: F401
    DEFAULT_TIERS,
    Tier,
    TierBenefit,
    TierCalculator,
    TierProgress,
    load_tier_table,
    validate_tier_table,
)

__all__ = [
    "DEFAULT_TIERS",
    "Tier",
    "TierBenefit",
    "TierCalculator",
    "TierProgress",
    "load_tier_table",
    "validate_tier_table",
]
