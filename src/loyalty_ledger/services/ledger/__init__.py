"""Loyalty ledger service: point earning, redemption, expiration and tiers."""

from .catalog import RewardCatalog
from .engine import LedgerEngine
from .locks import ResourceLocks
from .records import PointsSummary, RewardRecord, SummaryDelta, TransactionRecord, delta_for
from .store import LedgerStore

__all__ = [
    "LedgerEngine",
    "LedgerStore",
    "PointsSummary",
    "ResourceLocks",
    "RewardCatalog",
    "RewardRecord",
    "SummaryDelta",
    "TransactionRecord",
    "delta_for",
]
