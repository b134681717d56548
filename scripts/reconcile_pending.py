# scripts/reconcile_pending.py

"""
Polling worker that pulls chain outcomes for transactions awaiting
confirmation, releases submission guards left behind by a crashed or cut-off
submitter, and retries undelivered signer notifications.

Usage (from project root):

    python -m scripts.reconcile_pending            # loop every RECONCILE_INTERVAL_SEC
    python -m scripts.reconcile_pending --once     # single pass, then exit

Each pass reconciles at most `--limit` transactions, oldest update first.
Chain read failures are logged and retried on the next pass.
"""

from __future__ import annotations

import argparse
import logging
import time

from config import get_settings
from core.use_cases.transaction_coordinator_usecase import TransactionCoordinator

logger = logging.getLogger("reconcile_pending")


def run_pass(coordinator: TransactionCoordinator, *, limit: int) -> None:
    finalized = coordinator.reconcile_pending(limit=limit)
    redelivered = coordinator.redeliver_notifications(limit=limit)
    logger.info("Pass done: finalized=%d redelivered=%d", finalized, redelivered)


def main() -> None:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        description="Reconcile vault transactions awaiting chain confirmation."
    )
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit.")
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.RECONCILE_INTERVAL_SEC,
        help="Seconds between passes (default: RECONCILE_INTERVAL_SEC).",
    )
    parser.add_argument("--limit", type=int, default=100, help="Max transactions per pass.")
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    coordinator = TransactionCoordinator.from_settings()

    if args.once:
        run_pass(coordinator, limit=args.limit)
        return

    interval = max(int(args.interval), 1)
    logger.info("Reconciling every %ds (limit=%d)", interval, args.limit)
    while True:
        try:
            run_pass(coordinator, limit=args.limit)
        except Exception:
            logger.exception("Reconcile pass failed; retrying in %ds", interval)
        time.sleep(interval)


if __name__ == "__main__":
    main()
