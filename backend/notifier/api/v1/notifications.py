from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from notifier.core.auth import CurrentUser, require_roles, require_scheduler_token
from notifier.core.config import get_settings
from notifier.core.dependencies import get_db
from notifier.models.notification import Notification, NotificationAttempt
from notifier.schemas.notification import (
    BatchRequest,
    DeliveryBatchStats,
    EventBatchStats,
    NotificationAttemptOut,
    NotificationOut,
)
from notifier.services.event_processor import process_events_once
from notifier.services.notification_dispatcher import run_notifications_once
from notifier.utils.clock import as_utc

logger = logging.getLogger(__name__)

router = APIRouter()


def _ensure_pipeline_enabled() -> None:
    if not get_settings().enable_notification_pipeline:
        raise HTTPException(404, "Not found")


@router.post(
    "/notifications/process-events",
    response_model=EventBatchStats,
    dependencies=[Depends(require_scheduler_token)],
)
def process_events(payload: BatchRequest | None = None, db: Session = Depends(get_db)):
    _ensure_pipeline_enabled()
    request = payload or BatchRequest()
    stats = process_events_once(db, limit=request.limit, tenant_id=request.tenant_id)
    db.commit()
    return stats


@router.post(
    "/notifications/run",
    response_model=DeliveryBatchStats,
    dependencies=[Depends(require_scheduler_token)],
)
def run_notifications(payload: BatchRequest | None = None, db: Session = Depends(get_db)):
    _ensure_pipeline_enabled()
    request = payload or BatchRequest(limit=get_settings().notification_worker_batch_size)
    stats = run_notifications_once(db, limit=request.limit, tenant_id=request.tenant_id)
    db.commit()
    return stats


@router.get("/notifications/{notification_id}", response_model=NotificationOut)
def get_notification(
    notification_id: str,
    current_user: CurrentUser = Depends(require_roles("OWNER", "ADMIN", "OPERATOR", "SUPPORT")),
    db: Session = Depends(get_db),
):
    try:
        parsed_id = uuid.UUID(notification_id)
    except ValueError:
        raise HTTPException(404, "Notification not found")

    notification = db.get(Notification, parsed_id)
    # Other tenants' rows are indistinguishable from missing ones.
    if notification is None or str(notification.tenant_id) != current_user.tenant_id:
        raise HTTPException(404, "Notification not found")

    attempts = (
        db.execute(
            select(NotificationAttempt)
            .where(NotificationAttempt.notification_id == notification.id)
            .order_by(NotificationAttempt.attempt_no.asc(), NotificationAttempt.started_at.asc())
        )
        .scalars()
        .all()
    )

    return NotificationOut(
        id=str(notification.id),
        tenant_id=str(notification.tenant_id),
        event_id=str(notification.event_id) if notification.event_id else None,
        rule_id=str(notification.rule_id) if notification.rule_id else None,
        channel=notification.channel,
        recipient=notification.recipient,
        status=notification.status,
        scheduled_for=as_utc(notification.scheduled_for),
        next_attempt_at=as_utc(notification.next_attempt_at),
        attempt_count=int(notification.attempt_count or 0),
        max_attempts=int(notification.max_attempts or 0),
        last_attempt_at=as_utc(notification.last_attempt_at),
        last_error=notification.last_error,
        sent_at=as_utc(notification.sent_at),
        rendered_payload=notification.rendered_payload or {},
        attempts=[
            NotificationAttemptOut(
                attempt_no=attempt.attempt_no,
                status=attempt.status,
                started_at=as_utc(attempt.started_at),
                finished_at=as_utc(attempt.finished_at),
                error_code=attempt.error_code,
                error_message=attempt.error_message,
            )
            for attempt in attempts
        ],
    )
