from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from notifier.models.notification import Order
from notifier.utils.clock import as_db_dt

COMPLETED_PAYMENT_STATUSES = ("approved", "paid")


def has_completed_order_since(db: Session, tenant_id: str, email: str, since: Optional[datetime]) -> bool:
    """True when the customer (case-insensitive email) has a paid order created at/after ``since``."""
    normalized = (email or "").strip().lower()
    if not normalized:
        return False
    stmt = (
        select(Order.id)
        .where(
            Order.tenant_id == tenant_id,
            func.lower(Order.customer_email) == normalized,
            Order.payment_status.in_(COMPLETED_PAYMENT_STATUSES),
        )
        .limit(1)
    )
    if since is not None:
        stmt = stmt.where(Order.created_at >= as_db_dt(db, since))
    return db.execute(stmt).scalar_one_or_none() is not None


def conversion_check_for(db: Session):
    """Bind the lookup to a session for the matcher's ConversionCheck seam."""

    def _check(tenant_id: str, email: str, since: Optional[datetime]) -> bool:
        return has_completed_order_since(db, tenant_id, email, since)

    return _check
