from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from notifier.models.notification import NotificationDedupLedger
from notifier.schemas.notification import DedupeScope
from notifier.utils.dialect_insert import dialect_insert

logger = logging.getLogger(__name__)


def _entry_exists(db: Session, *, tenant_id: str, rule_id: str, entity_id: str) -> bool:
    existing = db.execute(
        select(NotificationDedupLedger.id).where(
            NotificationDedupLedger.tenant_id == tenant_id,
            NotificationDedupLedger.rule_id == rule_id,
            NotificationDedupLedger.entity_id == entity_id,
        )
    ).scalar_one_or_none()
    return existing is not None


def check_and_reserve(
    db: Session,
    *,
    tenant_id: str,
    rule_id: str,
    entity_type: str,
    entity_id: str,
    scope: DedupeScope,
    scope_key: str = "",
) -> bool:
    """Reserve (tenant, rule, entity) in the ledger.

    Returns True when an entry already existed (the notification is suppressed).
    A ``none`` scope never suppresses and writes nothing.
    """
    if scope == DedupeScope.NONE:
        return False

    if _entry_exists(db, tenant_id=tenant_id, rule_id=rule_id, entity_id=entity_id):
        logger.info("Dedup ledger hit: rule=%s entity=%s:%s", rule_id, entity_type, entity_id)
        return True

    values = {
        "tenant_id": tenant_id,
        "rule_id": rule_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "scope_key": scope_key or "",
    }
    # A concurrent run may insert between the check and here; the loser reports already-exists.
    stmt = (
        dialect_insert(db, NotificationDedupLedger.__table__)
        .values(**values)
        .on_conflict_do_nothing(index_elements=["tenant_id", "rule_id", "entity_id"])
    )
    return not bool(db.execute(stmt).rowcount)
