from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LedgerSnapshot:
    credits: Dict[str, int]
    redemptions: Dict[str, int]
    expirations: Dict[str, int]
    failures: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "credits": dict(self.credits),
            "redemptions": dict(self.redemptions),
            "expirations": dict(self.expirations),
            "failures": dict(self.failures),
        }


class LedgerObservabilityStore:
    """Collect ledger activity counters for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._credits: Dict[str, int] = defaultdict(int)
        self._redemptions: Dict[str, int] = defaultdict(int)
        self._expirations: Dict[str, int] = defaultdict(int)
        self._failures: Dict[str, int] = defaultdict(int)

    def record_credit(self, kind: str, points: int) -> None:
        with self._lock:
            self._credits[f"{kind}:count"] += 1
            self._credits[f"{kind}:points"] += points

    def record_duplicate_order(self) -> None:
        with self._lock:
            self._credits["duplicate_orders"] += 1

    def record_redemption(self, outcome: str, points: int = 0) -> None:
        with self._lock:
            self._redemptions[outcome] += 1
            if points:
                self._redemptions["points"] += points

    def record_expiration(self, points: int) -> None:
        with self._lock:
            self._expirations["transactions"] += 1
            self._expirations["points"] += points

    def record_store_failure(self, operation: str) -> None:
        with self._lock:
            self._failures[operation] += 1

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return LedgerSnapshot(
                credits=dict(self._credits),
                redemptions=dict(self._redemptions),
                expirations=dict(self._expirations),
                failures=dict(self._failures),
            )

    def reset(self) -> None:
        with self._lock:
            self._credits.clear()
            self._redemptions.clear()
            self._expirations.clear()
            self._failures.clear()


_STORE = LedgerObservabilityStore()


def get_ledger_observability() -> LedgerObservabilityStore:
    return _STORE


__all__ = ["LedgerObservabilityStore", "LedgerSnapshot", "get_ledger_observability"]
