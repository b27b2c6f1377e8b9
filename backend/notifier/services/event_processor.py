"""Match-and-schedule batch over the event inbox.

Each event is claimed (new/pending -> processing) with a conditional update
and committed before any rule work, so concurrent runs never process the
same event twice. Store errors propagate; any other error while evaluating
one event marks it ``ignored`` and the batch moves on.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notifier.core.config import Settings, get_settings
from notifier.models.notification import EventInbox, NotificationRule
from notifier.schemas.notification import EventBatchStats, EventStatus
from notifier.services.dedup_ledger import check_and_reserve
from notifier.services.notification_scheduler import plan_notifications, schedule_planned
from notifier.services.order_lookup import conversion_check_for
from notifier.services.rule_matcher import ConversionCheck, kind_for, match
from notifier.utils.alerting import alert_tracker
from notifier.utils.clock import db_now

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (EventStatus.NEW.value, EventStatus.PENDING.value)


def load_rules(db: Session, tenant_id) -> List[NotificationRule]:
    return list(
        db.execute(
            select(NotificationRule)
            .where(
                NotificationRule.tenant_id == tenant_id,
                NotificationRule.is_enabled.is_(True),
            )
            .order_by(NotificationRule.priority.desc(), NotificationRule.created_at.asc())
        )
        .scalars()
        .all()
    )


def _claim_event(db: Session, event_id) -> bool:
    result = db.execute(
        update(EventInbox)
        .where(EventInbox.id == event_id, EventInbox.status.in_(_OPEN_STATUSES))
        .values(status=EventStatus.PROCESSING.value)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _finish_event(db: Session, event: EventInbox, status: EventStatus, error: Optional[str] = None) -> None:
    event.status = status.value
    event.processed_at = db_now(db)
    event.error_message = error
    db.commit()


def process_events_once(
    db: Session,
    *,
    limit: int = 50,
    tenant_id: Optional[str] = None,
    settings: Optional[Settings] = None,
    conversion_check: Optional[ConversionCheck] = None,
) -> EventBatchStats:
    settings = settings or get_settings()
    check = conversion_check or conversion_check_for(db)
    stats = EventBatchStats()

    stmt = (
        select(EventInbox)
        .where(EventInbox.status.in_(_OPEN_STATUSES))
        .order_by(EventInbox.received_at.asc())
        .limit(int(max(1, limit)))
    )
    if tenant_id:
        stmt = stmt.where(EventInbox.tenant_id == tenant_id)
    events = db.execute(stmt).scalars().all()
    stats.events_fetched = len(events)

    rules_by_tenant: Dict[str, List[NotificationRule]] = {}

    for event in events:
        if not _claim_event(db, event.id):
            logger.info("Event %s claimed by another run; skipped", event.id)
            continue
        db.commit()
        db.refresh(event)

        tenant_key = str(event.tenant_id)
        if tenant_key not in rules_by_tenant:
            rules_by_tenant[tenant_key] = load_rules(db, event.tenant_id)
        rules = rules_by_tenant[tenant_key]

        now = db_now(db)
        try:
            matched = []
            for rule in rules:
                result = match(rule, event, conversion_check=check)
                if result.unmapped:
                    stats.unmapped_statuses += 1
                    alert_tracker.record(
                        "NOTIFICATION_STATUS_UNMAPPED",
                        {"rule_id": str(rule.id), "value": result.unmapped},
                    )
                    logger.warning(
                        "Unmapped status for rule %s (%s) on event %s: %s",
                        rule.id,
                        rule.rule_type,
                        event.id,
                        result.unmapped,
                    )
                if not result.matched:
                    continue
                plans = plan_notifications(rule, event, result, now=now, settings=settings)
                matched.append((rule, result, plans))
        except SQLAlchemyError:
            raise
        except Exception as exc:
            logger.exception("Event %s could not be evaluated", event.id)
            alert_tracker.record("EVENT_PROCESSING_ERROR", {"event_id": str(event.id)})
            stats.errors += 1
            stats.events_ignored += 1
            _finish_event(db, event, EventStatus.IGNORED, error=str(exc)[:1000])
            continue

        for rule, result, plans in matched:
            stats.rules_matched += 1
            suppressed = check_and_reserve(
                db,
                tenant_id=event.tenant_id,
                rule_id=rule.id,
                entity_type=result.entity_type,
                entity_id=result.entity_id,
                scope=kind_for(rule).dedupe_scope(rule),
            )
            if suppressed:
                stats.ledger_conflicts += 1
                continue
            stats.notifications_created += schedule_planned(db, rule=rule, event=event, plans=plans)

        if matched:
            stats.events_processed += 1
            _finish_event(db, event, EventStatus.PROCESSED)
        else:
            stats.events_ignored += 1
            _finish_event(db, event, EventStatus.IGNORED)

    if stats.events_fetched:
        logger.info(
            "Event batch: fetched=%s processed=%s ignored=%s created=%s conflicts=%s errors=%s",
            stats.events_fetched,
            stats.events_processed,
            stats.events_ignored,
            stats.notifications_created,
            stats.ledger_conflicts,
            stats.errors,
        )
    return stats
