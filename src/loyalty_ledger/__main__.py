"""Run loyalty point expiration from the command line.

Example:
    python -m loyalty_ledger --once
    python -m loyalty_ledger --once --reference-time 2026-01-01T00:00:00+00:00
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime

from loguru import logger

from loyalty_ledger import __version__
from loyalty_ledger.core.logging import configure_logging
from loyalty_ledger.core.settings import get_settings
from loyalty_ledger.db.session import create_schema, create_session_factory
from loyalty_ledger.services.ledger import LedgerEngine
from loyalty_ledger.workers import PointsExpirationWorker


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Expire lapsed loyalty points")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep and exit instead of looping.",
    )
    parser.add_argument(
        "--reference-time",
        type=datetime.fromisoformat,
        default=None,
        help="ISO-8601 instant treated as 'now' for a single sweep.",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Override the sweep interval in seconds when looping.",
    )
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> dict[str, int]:
    settings = get_settings()
    session_factory = create_session_factory(settings.database_url)
    db_engine = session_factory.kw["bind"]
    try:
        await create_schema(db_engine)
        engine = LedgerEngine.from_settings(settings, session_factory=session_factory)
        worker = PointsExpirationWorker(engine, interval_seconds=args.interval)

        if args.once:
            return await worker.run_once(reference_time=args.reference_time)

        if not settings.expiration_worker_enabled:
            logger.warning("Points expiration worker disabled, set EXPIRATION_WORKER_ENABLED or pass --once")
            return {}

        worker.start()
        try:
            await asyncio.Event().wait()
        finally:
            await worker.stop()
        return {}
    finally:
        await db_engine.dispose()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(get_settings(), version=__version__)
    try:
        summary = asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("Points expiration interrupted")
        return 130
    logger.success(
        "Points expiration run completed",
        accounts=summary.get("accounts", 0),
        transactions=summary.get("transactions", 0),
        points=summary.get("points", 0),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
