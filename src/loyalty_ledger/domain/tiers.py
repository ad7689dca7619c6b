"""Tier table configuration and the pure tier calculator.

Tiers are closed-open point bands ``[min_points, max_points)`` over an
account's lifetime point total. The table must start at zero, ascend without
gaps or overlaps, and only its last tier may be unbounded. A malformed table
is a configuration error and is rejected before any engine is built.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Sequence

from loyalty_ledger.errors import ConfigurationError


class TierBenefit(str, Enum):
    """Perks granted by membership tiers."""

    WELCOME_BONUS = "welcome_bonus"
    BIRTHDAY_TREAT = "birthday_treat"
    BONUS_POINTS = "bonus_points"
    FREE_DRINK_UPGRADE = "free_drink_upgrade"
    PRIORITY_SUPPORT = "priority_support"
    FREE_SIDE_DISH = "free_side_dish"
    EXCLUSIVE_MENU_ACCESS = "exclusive_menu_access"
    FREE_DELIVERY = "free_delivery"
    FREE_MONTHLY_MEAL = "free_monthly_meal"
    VIP_EVENTS = "vip_events"
    CHEF_CONSULTATION = "chef_consultation"


@dataclass(frozen=True, slots=True)
class Tier:
    """Immutable tier descriptor."""

    id: str
    name: str
    min_points: int
    max_points: int | None
    multiplier: Decimal
    benefits: frozenset[TierBenefit] = field(default_factory=frozenset)

    def contains(self, total_points: int) -> bool:
        if total_points < self.min_points:
            return False
        return self.max_points is None or total_points < self.max_points


@dataclass(frozen=True, slots=True)
class TierProgress:
    """Progress of a point total through its current tier."""

    current: int
    next: int
    percentage: Decimal


DEFAULT_TIERS: tuple[Tier, ...] = (
    Tier(
        id="bronze",
        name="Bronze Member",
        min_points=0,
        max_points=500,
        multiplier=Decimal("1"),
        benefits=frozenset({TierBenefit.WELCOME_BONUS, TierBenefit.BIRTHDAY_TREAT}),
    ),
    Tier(
        id="silver",
        name="Silver Member",
        min_points=500,
        max_points=1000,
        multiplier=Decimal("2"),
        benefits=frozenset(
            {TierBenefit.BONUS_POINTS, TierBenefit.FREE_DRINK_UPGRADE, TierBenefit.PRIORITY_SUPPORT}
        ),
    ),
    Tier(
        id="gold",
        name="Gold Member",
        min_points=1000,
        max_points=2000,
        multiplier=Decimal("3"),
        benefits=frozenset(
            {
                TierBenefit.BONUS_POINTS,
                TierBenefit.FREE_SIDE_DISH,
                TierBenefit.EXCLUSIVE_MENU_ACCESS,
                TierBenefit.FREE_DELIVERY,
            }
        ),
    ),
    Tier(
        id="platinum",
        name="Platinum Member",
        min_points=2000,
        max_points=None,
        multiplier=Decimal("5"),
        benefits=frozenset(
            {
                TierBenefit.BONUS_POINTS,
                TierBenefit.FREE_MONTHLY_MEAL,
                TierBenefit.VIP_EVENTS,
                TierBenefit.CHEF_CONSULTATION,
            }
        ),
    ),
)


def validate_tier_table(tiers: Sequence[Tier]) -> None:
    """Raise ``ConfigurationError`` unless ``tiers`` forms a contiguous ladder."""

    if not tiers:
        raise ConfigurationError("Tier table is empty")

    seen: set[str] = set()
    for index, tier in enumerate(tiers):
        if tier.id in seen:
            raise ConfigurationError(f"Duplicate tier id: {tier.id}")
        seen.add(tier.id)

        if not tier.multiplier.is_finite() or tier.multiplier <= 0:
            raise ConfigurationError(f"Tier {tier.id} multiplier must be positive")

        is_last = index == len(tiers) - 1
        if tier.max_points is None and not is_last:
            raise ConfigurationError(f"Only the last tier may be unbounded, got {tier.id}")
        if tier.max_points is not None and tier.max_points <= tier.min_points:
            raise ConfigurationError(f"Tier {tier.id} has an empty point range")

        if index == 0:
            if tier.min_points != 0:
                raise ConfigurationError("The first tier must start at zero points")
            continue

        previous = tiers[index - 1]
        if previous.max_points != tier.min_points:
            raise ConfigurationError(
                f"Tier {tier.id} starts at {tier.min_points} but {previous.id} ends at {previous.max_points}"
            )


class TierCalculator:
    """Map lifetime point totals onto the configured tier ladder."""

    def __init__(self, tiers: Iterable[Tier] = DEFAULT_TIERS) -> None:
        ordered = tuple(tiers)
        validate_tier_table(ordered)
        self._tiers = ordered

    @property
    def tiers(self) -> tuple[Tier, ...]:
        return self._tiers

    def current_tier(self, total_points: int) -> Tier:
        for tier in self._tiers:
            if tier.contains(total_points):
                return tier
        return self._tiers[-1]

    def next_tier(self, current: Tier) -> Tier | None:
        for index, tier in enumerate(self._tiers):
            if tier.id == current.id:
                return self._tiers[index + 1] if index + 1 < len(self._tiers) else None
        raise ValueError(f"Tier {current.id} is not part of this table")

    def tier_progress(self, total_points: int) -> TierProgress:
        current_tier = self.current_tier(total_points)
        next_tier = self.next_tier(current_tier)
        if next_tier is None:
            return TierProgress(current=total_points, next=0, percentage=Decimal("100"))

        current = total_points - current_tier.min_points
        span = next_tier.min_points - current_tier.min_points
        percentage = min(Decimal("100"), Decimal(100 * current) / Decimal(span))
        return TierProgress(current=current, next=span, percentage=percentage)


def _parse_tier(key: str, payload: dict[str, Any]) -> Tier:
    try:
        multiplier = Decimal(str(payload.get("multiplier", "1")))
    except InvalidOperation as exc:
        raise ConfigurationError(f"Tier {key} has an invalid multiplier") from exc

    benefits: set[TierBenefit] = set()
    for raw in payload.get("benefits", []):
        try:
            benefits.add(TierBenefit(raw))
        except ValueError as exc:
            raise ConfigurationError(f"Tier {key} lists unknown benefit {raw!r}") from exc

    max_points = payload.get("max_points")
    try:
        return Tier(
            id=str(payload.get("id") or key),
            name=str(payload.get("name") or key.title()),
            min_points=int(payload["min_points"]),
            max_points=int(max_points) if max_points is not None else None,
            multiplier=multiplier,
            benefits=frozenset(benefits),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Tier {key} is missing a valid point range") from exc


def load_tier_table(config_path: Path) -> tuple[Tier, ...]:
    """Load and validate a tier table from a TOML file with ``[tiers.<id>]`` tables."""

    if not config_path.exists():
        raise ConfigurationError(f"Tier config not found: {config_path}")

    try:
        data = tomllib.loads(config_path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Tier config is not valid TOML: {config_path}") from exc

    entries = data.get("tiers", {})
    if not isinstance(entries, dict):
        raise ConfigurationError("Tier config must define [tiers.<id>] tables")

    tiers = [_parse_tier(key, payload) for key, payload in entries.items() if isinstance(payload, dict)]
    tiers.sort(key=lambda tier: tier.min_points)
    validate_tier_table(tiers)
    return tuple(tiers)


__all__ = [
    "DEFAULT_TIERS",
    "Tier",
    "TierBenefit",
    "TierCalculator",
    "TierProgress",
    "load_tier_table",
    "validate_tier_table",
]
