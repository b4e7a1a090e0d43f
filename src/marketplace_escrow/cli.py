"""Command-line entry point for the expiry sweep.

Meant for cron or a Kubernetes CronJob when the in-process scheduler is
disabled:

    marketplace-escrow-sweep                 # one sweep, JSON result on stdout
    marketplace-escrow-sweep --loop -i 60    # sweep every 60 seconds

Log lines go to stderr so stdout stays machine-readable. Exit status is 1
when the ledger cannot be queried, so the scheduler can alert and retry.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from marketplace_escrow.config import get_settings
from marketplace_escrow.domain.exceptions import TransientStoreFailure
from marketplace_escrow.infrastructure.database.engine import close_db, get_session_factory
from marketplace_escrow.logging_config import get_logger, setup_logging_from_settings
from marketplace_escrow.services.sweep_worker import ExpirySweepWorker, run_periodically

logger = get_logger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="marketplace-escrow-sweep",
        description="Auto-release escrow for confirmations whose window has elapsed.",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="keep sweeping until interrupted instead of running once",
    )
    parser.add_argument(
        "-i",
        "--interval",
        type=float,
        default=None,
        help="seconds between sweeps with --loop (default: SWEEP_INTERVAL_SECONDS or 60)",
    )
    parser.add_argument("--max-concurrency", type=int, default=None)
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    worker = ExpirySweepWorker(get_session_factory(), max_concurrency=args.max_concurrency)
    try:
        if args.loop:
            interval = args.interval or settings.sweep_interval_seconds or 60
            await run_periodically(worker, interval)
            return 0

        try:
            result = await worker.run_sweep()
        except TransientStoreFailure as exc:
            logger.error("sweep.aborted", error=exc.message)
            return 1

        print(
            json.dumps(
                {
                    "processed": result.processed,
                    "timestamp": result.timestamp.isoformat(),
                    "failed": result.failed,
                    "warnings": result.warnings,
                }
            )
        )
        return 0
    finally:
        await close_db()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    setup_logging_from_settings(get_settings(), stream=sys.stderr)
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
