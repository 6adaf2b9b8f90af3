"""
Periodic sweep: ends auctions past their end time and expires stale offers.

Run once from cron with ``python sweep.py --once`` or as a long-lived
sidecar with ``python sweep.py`` (interval from SWEEP_INTERVAL_SECONDS).
"""

import argparse
import logging
import time

import config
from database import db
from logger import setup_logging
from main import build_coordinator

logger = logging.getLogger("sweep")


def run_forever(coordinator, interval: int) -> None:
    logger.info("sweeper started, interval %ss", interval)
    while True:
        results = coordinator.run_sweeps()
        logger.info("sweep finished: %s", results)
        time.sleep(interval)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the marketplace lifecycle sweeps")
    parser.add_argument("--once", action="store_true", help="run a single sweep and exit")
    parser.add_argument("--interval", type=int, default=config.SWEEP_INTERVAL_SECONDS)
    args = parser.parse_args()

    setup_logging()
    if db is None:
        raise SystemExit("DATABASE_URL and DATABASE_NAME must be set")

    coordinator = build_coordinator(db)
    if args.once:
        logger.info("sweep finished: %s", coordinator.run_sweeps())
        return
    run_forever(coordinator, args.interval)


if __name__ == "__main__":
    main()
