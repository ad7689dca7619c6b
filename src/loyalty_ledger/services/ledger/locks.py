"""Keyed asyncio locks taken in one global order."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, MutableMapping

ACCOUNT = "account"
REWARD = "reward"

LockKey = tuple[str, str]


class ResourceLocks:
    """Per-account and per-reward mutual exclusion for ledger mutations.

    Keys are always acquired accounts first, then rewards, each kind in
    lexical order, and released in reverse. Any two operations therefore
    request shared keys in the same order and cannot deadlock. Entries are
    dropped once nobody holds or waits on them.
    """

    def __init__(self) -> None:
        self._locks: MutableMapping[LockKey, asyncio.Lock] = {}
        self._users: MutableMapping[LockKey, int] = {}

    @staticmethod
    def ordered_keys(accounts: Iterable[str] = (), rewards: Iterable[str] = ()) -> list[LockKey]:
        return [(ACCOUNT, key) for key in sorted(set(accounts))] + [(REWARD, key) for key in sorted(set(rewards))]

    def is_locked(self, kind: str, key: str) -> bool:
        lock = self._locks.get((kind, key))
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

    def _checkout(self, key: LockKey) -> asyncio.Lock:
        self._users[key] = self._users.get(key, 0) + 1
        return self._locks.setdefault(key, asyncio.Lock())

    def _checkin(self, key: LockKey) -> None:
        users = self._users.get(key, 0) - 1
        if users <= 0:
            self._users.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._users[key] = users

    @asynccontextmanager
    async def hold(self, *, accounts: Iterable[str] = (), rewards: Iterable[str] = ()) -> AsyncIterator[None]:
        keys = self.ordered_keys(accounts, rewards)
        acquired: list[LockKey] = []
        try:
            for key in keys:
                lock = self._checkout(key)
                try:
                    await lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)


__all__ = ["ACCOUNT", "REWARD", "ResourceLocks"]
