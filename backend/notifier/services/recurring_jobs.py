from __future__ import annotations

import asyncio
import logging

from notifier.core.config import get_settings
from notifier.core.dependencies import SessionLocal
from notifier.services.event_processor import process_events_once
from notifier.services.notification_dispatcher import run_notifications_once

logger = logging.getLogger(__name__)


def run_pipeline_cycle(*, event_batch_size: int, delivery_batch_size: int) -> None:
    """One match-and-schedule pass followed by one delivery pass, each in its own session."""
    db = SessionLocal()
    try:
        stats = process_events_once(db, limit=event_batch_size)
        if stats.notifications_created:
            logger.info("Scheduled notifications: %s", stats.notifications_created)
        db.commit()
    finally:
        db.close()

    db = SessionLocal()
    try:
        run_notifications_once(db, limit=delivery_batch_size)
        db.commit()
    finally:
        db.close()


async def _notification_pipeline_loop(
    *, interval_seconds: int, event_batch_size: int, delivery_batch_size: int
) -> None:
    # Backoff on errors to avoid tight loops.
    error_sleep = max(10, min(60, interval_seconds))
    while True:
        try:
            settings = get_settings()
            if not settings.enable_recurring_jobs:
                await asyncio.sleep(interval_seconds)
                continue
            if not settings.enable_notification_pipeline:
                await asyncio.sleep(interval_seconds)
                continue
            if SessionLocal is None:
                await asyncio.sleep(interval_seconds)
                continue

            # Provider calls block; keep them off the event loop.
            await asyncio.to_thread(
                run_pipeline_cycle,
                event_batch_size=event_batch_size,
                delivery_batch_size=delivery_batch_size,
            )
            await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Notification pipeline worker error")
            await asyncio.sleep(error_sleep)


def start_notification_pipeline_worker() -> asyncio.Task | None:
    """
    Starts the in-process pipeline loop. Callers keep the task reference
    if they need explicit cancellation.
    """
    settings = get_settings()
    interval = int(max(5, min(300, int(settings.notification_worker_interval_seconds or 30))))
    delivery_batch_size = int(max(1, min(200, int(settings.notification_worker_batch_size or 25))))
    event_batch_size = int(max(1, min(500, int(settings.event_worker_batch_size or 50))))
    return asyncio.create_task(
        _notification_pipeline_loop(
            interval_seconds=interval,
            event_batch_size=event_batch_size,
            delivery_batch_size=delivery_batch_size,
        )
    )
