"""Observability helpers."""

from .ledger import LedgerObservabilityStore, LedgerSnapshot, get_ledger_observability

__all__ = ["LedgerObservabilityStore", "LedgerSnapshot", "get_ledger_observability"]
