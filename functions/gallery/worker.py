"""
Worker loop that drains analytics events from the queue.

Each event is stored and, for views and downloads, applied to the
wallpaper's counters. Likes are counted when the favorite is written, so
like/unlike events are only recorded.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from gallery.db import AnalyticsEvent, DbClient
from gallery.dependencies import get_db_client, get_queue_client
from gallery.queue import EventQueue

logger = logging.getLogger(__name__)


def process_event(event: AnalyticsEvent, db: DbClient) -> bool:
    """Apply one event. Returns False if the wallpaper no longer exists."""
    if event.event_type == "view":
        applied = db.increment_view_count(event.wallpaper_id)
    elif event.event_type == "download":
        applied = db.increment_download_count(event.wallpaper_id)
    else:
        applied = db.get_wallpaper(event.wallpaper_id) is not None

    if not applied:
        logger.warning(
            "Skipping %s event for unknown wallpaper %s",
            event.event_type,
            event.wallpaper_id,
        )
        return False
    db.record_event(event)
    return True


def process_next(
    db: Optional[DbClient] = None,
    queue: Optional[EventQueue] = None,
    block: bool = True,
    timeout: Optional[int] = None,
) -> bool:
    """
    Fetch and process one event from the queue. Returns True if an event was consumed.
    """
    db = db or get_db_client()
    queue = queue or get_queue_client()

    message = queue.dequeue(block=block, timeout=timeout)
    if not message:
        return False
    try:
        event = AnalyticsEvent.from_json(message)
    except (ValueError, TypeError):
        logger.exception("Dropping malformed analytics message: %r", message)
        return True

    process_event(event, db)
    return True


def run_loop(poll_interval_seconds: float = 2.0) -> None:
    """
    Simple polling loop that blocks on the queue. Intended to be run under systemd/supervisor.
    """
    db = get_db_client()
    queue = get_queue_client()
    logger.info("Analytics worker started with %s", queue.__class__.__name__)
    while True:
        processed = process_next(
            db=db, queue=queue, block=True, timeout=int(poll_interval_seconds)
        )
        if not processed:
            time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_loop()
