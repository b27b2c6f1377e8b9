from __future__ import annotations

from typing import Any, Dict

from sqlalchemy.orm import Session

from notifier.models.notification import Notification, NotificationLog
from notifier.utils.clock import db_now
from notifier.utils.dialect_insert import dialect_insert

PREVIEW_LIMIT = 500


def content_preview(channel: str, rendered: Dict[str, Any]) -> str:
    if channel == "whatsapp":
        preview = str(rendered.get("whatsapp_message") or "")[:200]
    else:
        subject = str(rendered.get("email_subject") or "")
        body = str(rendered.get("email_body") or "")[:150]
        preview = f"{subject}: {body}" if subject else body
    return preview[:PREVIEW_LIMIT]


def _log_values(db: Session, notification: Notification) -> Dict[str, Any]:
    rendered = notification.rendered_payload or {}
    return {
        "tenant_id": notification.tenant_id,
        "notification_id": notification.id,
        "rule_id": notification.rule_id,
        "rule_type": rendered.get("rule_type"),
        "channel": notification.channel,
        "order_id": rendered.get("order_id"),
        "customer_id": rendered.get("customer_id"),
        "checkout_session_id": rendered.get("checkout_session_id"),
        "recipient": notification.recipient,
        "status": notification.status,
        "scheduled_for": notification.scheduled_for,
        "sent_at": notification.sent_at,
        "content_preview": content_preview(notification.channel, rendered),
        "attachments": rendered.get("attachments"),
        "attempt_count": int(notification.attempt_count or 0),
        "error_message": notification.last_error,
        "updated_at": db_now(db),
    }


def upsert_notification_log(db: Session, notification: Notification) -> None:
    """One audit row per notification, keyed on notification_id."""
    values = _log_values(db, notification)
    mutable = {key: value for key, value in values.items() if key not in ("notification_id", "tenant_id")}
    stmt = dialect_insert(db, NotificationLog.__table__).values(**values)
    db.execute(stmt.on_conflict_do_update(index_elements=["notification_id"], set_=mutable))
