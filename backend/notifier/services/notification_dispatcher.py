"""Delivery batch: recover stuck rows, claim due notifications, send, record attempts.

Claims are conditional updates (scheduled/retrying -> sending) committed
before any provider call, so two overlapping runs never send the same row.
``attempt_count`` only moves when an outcome is recorded, so a run that dies
mid-send does not use up an attempt.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Mapping, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from notifier.core.config import Settings, get_settings
from notifier.models.notification import Notification, NotificationAttempt
from notifier.schemas.notification import AttemptStatus, DeliveryBatchStats, NotificationStatus
from notifier.services.channels.base import ChannelSender, SendResult, failure
from notifier.services.channels.email_sender import EmailSender
from notifier.services.channels.sender_config import SenderConfigCache
from notifier.services.channels.whatsapp_sender import WhatsAppSender
from notifier.services.notification_audit import upsert_notification_log
from notifier.utils.alerting import alert_tracker
from notifier.utils.clock import db_now

logger = logging.getLogger(__name__)

_CLAIMABLE = (NotificationStatus.SCHEDULED.value, NotificationStatus.RETRYING.value)

BACKOFF_BASE_SECONDS = 60
BACKOFF_MAX_SECONDS = 3600


def compute_backoff(attempt_count: int) -> timedelta:
    # 1m, 2m, 4m, 8m, ... capped to 60m
    seconds = BACKOFF_BASE_SECONDS * (2 ** max(0, attempt_count - 1))
    seconds = max(BACKOFF_BASE_SECONDS, min(BACKOFF_MAX_SECONDS, seconds))
    return timedelta(seconds=seconds)


def build_senders(db: Session, settings: Settings) -> dict[str, ChannelSender]:
    configs = SenderConfigCache(db)
    available: list[ChannelSender] = [EmailSender(configs, settings), WhatsAppSender(configs, settings)]
    known = set(settings.notification_known_channels or [])
    return {sender.channel: sender for sender in available if sender.channel in known}


def recover_stuck(
    db: Session,
    *,
    now: datetime,
    window_seconds: int,
    tenant_id: Optional[str] = None,
) -> int:
    """Rows left in ``sending`` longer than the window go back to ``retrying``."""
    cutoff = now - timedelta(seconds=int(window_seconds))
    stmt = select(Notification).where(
        Notification.status == NotificationStatus.SENDING.value,
        or_(Notification.last_attempt_at < cutoff, Notification.last_attempt_at.is_(None)),
    )
    if tenant_id:
        stmt = stmt.where(Notification.tenant_id == tenant_id)
    stuck = db.execute(stmt).scalars().all()

    for row in stuck:
        for attempt in (
            db.execute(
                select(NotificationAttempt).where(
                    NotificationAttempt.notification_id == row.id,
                    NotificationAttempt.status == AttemptStatus.PENDING.value,
                )
            )
            .scalars()
            .all()
        ):
            attempt.status = AttemptStatus.ERROR.value
            attempt.error_code = "STUCK_RECOVERED"
            attempt.error_message = "No result recorded before the recovery window elapsed"
            attempt.finished_at = now

        row.last_error = "Recovered from stuck sending state"
        row.status = NotificationStatus.RETRYING.value
        row.next_attempt_at = now
        db.flush()
        upsert_notification_log(db, row)
        alert_tracker.record("NOTIFICATION_STUCK_RECOVERED", {"notification_id": str(row.id)})

    if stuck:
        logger.warning("Recovered %s notifications stuck in sending", len(stuck))
    return len(stuck)


def _claim(db: Session, notification_id, now: datetime) -> bool:
    result = db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.status.in_(_CLAIMABLE))
        .values(
            status=NotificationStatus.SENDING.value,
            last_attempt_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _send(senders: Mapping[str, ChannelSender], notification: Notification) -> SendResult:
    sender = senders.get(notification.channel)
    if sender is None:
        return failure("UNSUPPORTED_CHANNEL", f"Unsupported channel: {notification.channel}")
    try:
        return sender.send(
            notification.recipient,
            dict(notification.rendered_payload or {}),
            tenant_id=str(notification.tenant_id),
        )
    except Exception as exc:
        logger.exception("Sender %s raised for notification %s", notification.channel, notification.id)
        return failure("SENDER_EXCEPTION", str(exc) or exc.__class__.__name__)


def run_notifications_once(
    db: Session,
    *,
    limit: int = 25,
    tenant_id: Optional[str] = None,
    senders: Optional[Mapping[str, ChannelSender]] = None,
    settings: Optional[Settings] = None,
) -> DeliveryBatchStats:
    settings = settings or get_settings()
    stats = DeliveryBatchStats()
    now = db_now(db)

    stats.unstuck_count = recover_stuck(
        db,
        now=now,
        window_seconds=settings.notification_recovery_window_seconds,
        tenant_id=tenant_id,
    )
    db.commit()

    stmt = (
        select(Notification.id)
        .where(
            Notification.status.in_(_CLAIMABLE),
            Notification.next_attempt_at <= now,
        )
        .order_by(Notification.next_attempt_at.asc())
        .limit(int(max(1, limit)))
    )
    if tenant_id:
        stmt = stmt.where(Notification.tenant_id == tenant_id)
    due_ids = db.execute(stmt).scalars().all()

    claimed = [notification_id for notification_id in due_ids if _claim(db, notification_id, now)]
    db.commit()
    stats.claimed_count = len(claimed)
    if len(claimed) < len(due_ids):
        logger.info("Skipped %s notifications claimed by another run", len(due_ids) - len(claimed))

    if senders is None:
        senders = build_senders(db, settings)

    for notification_id in claimed:
        notification = db.get(Notification, notification_id)
        if notification is None:
            continue
        attempt_no = int(notification.attempt_count or 0) + 1
        attempt = NotificationAttempt(
            tenant_id=notification.tenant_id,
            notification_id=notification.id,
            attempt_no=attempt_no,
            status=AttemptStatus.PENDING.value,
            started_at=now,
        )
        db.add(attempt)
        db.commit()

        result = _send(senders, notification)
        finished_at = db_now(db)
        attempt.finished_at = finished_at
        notification.attempt_count = attempt_no

        if result.success:
            attempt.status = AttemptStatus.SUCCESS.value
            attempt.provider_response = result.provider_response or {"message_id": result.provider_message_id}
            notification.status = NotificationStatus.SENT.value
            notification.sent_at = finished_at
            notification.last_error = None
            stats.processed_success += 1
        else:
            attempt.status = AttemptStatus.ERROR.value
            attempt.error_code = result.error_code or "SEND_FAILED"
            attempt.error_message = result.error
            attempt.provider_response = result.provider_response
            notification.last_error = result.error
            stats.processed_error += 1
            alert_tracker.record(
                "NOTIFICATION_SEND_FAILED",
                {"notification_id": str(notification.id), "error_code": attempt.error_code},
            )

            if attempt_no >= int(notification.max_attempts or 0):
                notification.status = NotificationStatus.FAILED.value
                stats.failed_final += 1
                alert_tracker.record("NOTIFICATION_FAILED_FINAL", {"notification_id": str(notification.id)})
                logger.warning(
                    "Notification %s failed permanently after %s attempts: %s",
                    notification.id,
                    attempt_no,
                    result.error,
                )
            else:
                notification.status = NotificationStatus.RETRYING.value
                notification.next_attempt_at = finished_at + compute_backoff(attempt_no)
                stats.scheduled_retries += 1

        db.flush()
        upsert_notification_log(db, notification)
        db.commit()

    if claimed or stats.unstuck_count:
        logger.info(
            "Delivery batch: claimed=%s sent=%s errors=%s retries=%s failed=%s unstuck=%s",
            stats.claimed_count,
            stats.processed_success,
            stats.processed_error,
            stats.scheduled_retries,
            stats.failed_final,
            stats.unstuck_count,
        )
    return stats
