"""Worker wiring for periodic loyalty point expiration sweeps."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict

from loguru import logger

from loyalty_ledger.core.settings import get_settings
from loyalty_ledger.services.ledger import LedgerEngine


class PointsExpirationWorker:
    """Periodically lapses point lots whose expiry has passed."""

    def __init__(self, engine: LedgerEngine, *, interval_seconds: int | None = None) -> None:
        self._engine = engine
        self.interval_seconds = interval_seconds or get_settings().expiration_interval_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info("Points expiration worker started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Points expiration worker stopped")

    async def run_once(self, *, reference_time: datetime | None = None) -> Dict[str, int]:
        """Execute a single sweep and summarize what lapsed."""

        records = await self._engine.expire_points(reference_time=reference_time)
        return {
            "accounts": len({record.account_id for record in records}),
            "transactions": len(records),
            "points": sum(-record.points for record in records),
        }

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - keep the loop alive
                logger.exception("Points expiration iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
