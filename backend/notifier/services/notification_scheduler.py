"""Turns a matched (rule, event) pair into scheduled notification rows.

Planning is pure (channels, recipients, keys, rendering, delay); persistence
happens afterwards in ``schedule_planned`` so a rendering problem can never
leave half-written rows behind.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from notifier.core.config import Settings
from notifier.models.notification import EventInbox, Notification, NotificationRule
from notifier.schemas.notification import NotificationStatus, RuleType
from notifier.services.notification_audit import upsert_notification_log
from notifier.services.payload_path import first_text, get_path
from notifier.services.rule_matcher import MatchResult, resolve_rule_type
from notifier.services.template_render import build_context, render_template
from notifier.utils.dialect_insert import dialect_insert

logger = logging.getLogger(__name__)

_DELAY_UNIT_SECONDS = {
    "seconds": 1,
    "minutes": 60,
    "hours": 3600,
    "days": 86400,
}

RECIPIENT_PATHS = {
    "email": ("customer_email", "customer.email", "email"),
    "whatsapp": ("customer_phone", "customer.phone", "phone"),
}


@dataclass(frozen=True)
class ChannelTarget:
    channel: str
    recipient_path: Optional[str] = None
    template_key: Optional[str] = None
    delay_seconds: Optional[int] = None
    payload_override: Optional[Dict[str, Any]] = None


@dataclass
class PlannedNotification:
    channel: str
    recipient: str
    dedupe_key: str
    template_key: str
    scheduled_for: datetime
    max_attempts: int
    rendered_payload: Dict[str, Any] = field(default_factory=dict)


def delay_seconds(amount: Optional[int], unit: Optional[str]) -> int:
    multiplier = _DELAY_UNIT_SECONDS.get((unit or "").strip().lower(), 1)
    return max(0, int(amount or 0)) * multiplier


def compute_dedupe_key(
    *,
    tenant_id: str,
    rule_id: str,
    entity_id: str,
    channel: str,
    trigger_condition: Optional[str],
) -> str:
    raw = "|".join([str(tenant_id), str(rule_id), str(entity_id), channel, trigger_condition or ""])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:48]


def resolve_targets(rule: NotificationRule, settings: Settings) -> List[ChannelTarget]:
    """rule.channels, else legacy enqueue actions, else the configured default channel."""
    channels = [str(ch).strip().lower() for ch in (rule.channels or []) if str(ch).strip()]
    if channels:
        seen: list[str] = []
        for channel in channels:
            if channel not in seen:
                seen.append(channel)
        return [ChannelTarget(channel=channel) for channel in seen]

    targets = []
    for action in rule.actions or []:
        if not isinstance(action, dict) or action.get("type") != "enqueue_notification":
            continue
        override = action.get("payload_override")
        targets.append(
            ChannelTarget(
                channel=str(action.get("channel") or settings.notification_default_channel).strip().lower(),
                recipient_path=action.get("recipient_path") or None,
                template_key=action.get("template_key") or None,
                delay_seconds=action.get("delay_seconds"),
                payload_override=override if isinstance(override, dict) else None,
            )
        )
    if targets:
        return targets
    return [ChannelTarget(channel=settings.notification_default_channel)]


def recipient_for(target: ChannelTarget, payload: Dict[str, Any]) -> str:
    if target.recipient_path:
        value = get_path(payload, target.recipient_path)
        if value and not isinstance(value, (dict, list)):
            return str(value).strip()
    return first_text(payload, RECIPIENT_PATHS.get(target.channel, ()))


def _template_key(rule: NotificationRule, rule_type: RuleType, target: ChannelTarget) -> str:
    if target.template_key:
        return target.template_key
    if rule_type == RuleType.LEGACY:
        return "default"
    condition = (rule.trigger_condition or "").strip().lower()
    return f"{rule_type.value}:{condition}" if condition else rule_type.value


def render_payload(
    rule: NotificationRule,
    event: EventInbox,
    rule_type: RuleType,
    target: ChannelTarget,
    *,
    store_name: str,
) -> Dict[str, Any]:
    payload = event.payload
    context = build_context(payload, store_name=store_name)
    rendered: Dict[str, Any] = {
        "rule_type": rule_type.value,
        "trigger_condition": rule.trigger_condition,
        "event_type": event.event_type,
        "email_subject": render_template(rule.email_subject, context, payload),
        "email_body": render_template(rule.email_body, context, payload),
        "whatsapp_message": render_template(rule.whatsapp_message, context, payload),
        "order_id": first_text(payload, ("order_id", "order.id")) or None,
        "customer_id": first_text(payload, ("customer_id", "customer.id")) or None,
        "checkout_session_id": first_text(payload, ("session_id", "checkout_session_id", "cart_id")) or None,
        "customer_name": context.get("customer_name"),
        "store_name": context.get("store_name"),
        "attachments": list(rule.attachments or []),
    }
    if target.payload_override is not None:
        rendered["data"] = target.payload_override
    elif rule_type == RuleType.LEGACY:
        rendered["data"] = payload
    return rendered


def plan_notifications(
    rule: NotificationRule,
    event: EventInbox,
    match: MatchResult,
    *,
    now: datetime,
    settings: Settings,
) -> List[PlannedNotification]:
    """Pure: no reads or writes against the store."""
    rule_type = resolve_rule_type(rule)
    payload = event.payload
    plans: List[PlannedNotification] = []

    for target in resolve_targets(rule, settings):
        recipient = recipient_for(target, payload)
        if not recipient:
            logger.info("No %s recipient in event %s for rule %s; channel skipped", target.channel, event.id, rule.id)
            continue

        template_key = _template_key(rule, rule_type, target)
        condition = rule.trigger_condition if rule_type != RuleType.LEGACY else template_key
        dedupe_key = compute_dedupe_key(
            tenant_id=str(rule.tenant_id),
            rule_id=str(rule.id),
            entity_id=match.entity_id,
            channel=target.channel,
            trigger_condition=condition,
        )

        if target.delay_seconds is not None:
            delay = max(0, int(target.delay_seconds or 0))
        else:
            delay = delay_seconds(rule.delay_amount, rule.delay_unit)

        plans.append(
            PlannedNotification(
                channel=target.channel,
                recipient=recipient,
                dedupe_key=dedupe_key,
                template_key=template_key,
                scheduled_for=now + timedelta(seconds=delay),
                max_attempts=int(settings.notification_max_attempts),
                rendered_payload=render_payload(
                    rule, event, rule_type, target, store_name=settings.default_store_name
                ),
            )
        )
    return plans


def _insert_ignoring_duplicates(db: Session, values: Dict[str, Any]) -> bool:
    stmt = (
        dialect_insert(db, Notification.__table__)
        .values(**values)
        .on_conflict_do_nothing(index_elements=["dedupe_key"])
    )
    return bool(db.execute(stmt).rowcount)


def schedule_planned(
    db: Session,
    *,
    rule: NotificationRule,
    event: EventInbox,
    plans: List[PlannedNotification],
) -> int:
    """Insert planned rows; an existing dedupe_key is skipped. Returns rows created."""
    created = 0
    for plan in plans:
        existing = db.execute(
            select(Notification.id).where(Notification.dedupe_key == plan.dedupe_key)
        ).scalar_one_or_none()
        if existing is not None:
            logger.info("Notification already scheduled (dedupe_key=%s)", plan.dedupe_key)
            continue

        notification_id = uuid.uuid4()
        inserted = _insert_ignoring_duplicates(
            db,
            {
                "id": notification_id,
                "tenant_id": event.tenant_id,
                "event_id": event.id,
                "rule_id": rule.id,
                "channel": plan.channel,
                "recipient": plan.recipient,
                "template_key": plan.template_key,
                "rendered_payload": plan.rendered_payload,
                "dedupe_key": plan.dedupe_key,
                "status": NotificationStatus.SCHEDULED.value,
                "scheduled_for": plan.scheduled_for,
                "next_attempt_at": plan.scheduled_for,
                "attempt_count": 0,
                "max_attempts": plan.max_attempts,
            },
        )
        if not inserted:
            continue

        notification = db.get(Notification, notification_id)
        upsert_notification_log(db, notification)
        created += 1
        logger.info(
            "Notification scheduled: id=%s channel=%s scheduled_for=%s",
            notification_id,
            plan.channel,
            plan.scheduled_for,
        )
    return created
