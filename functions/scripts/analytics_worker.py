"""
Daemon that drains queued analytics events into the database.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gallery.dependencies import get_db_client, get_queue_client
from gallery.worker import process_next, run_loop

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Gallery analytics worker")
    parser.add_argument(
        "--interval-seconds",
        type=int,
        default=2,
        help="Seconds to block on the queue before polling again",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Drain whatever is queued and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    if args.once:
        db = get_db_client()
        queue = get_queue_client()
        processed = 0
        while process_next(db=db, queue=queue, block=False):
            processed += 1
        logger.info("Processed %d events", processed)
        return 0

    run_loop(poll_interval_seconds=args.interval_seconds)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
