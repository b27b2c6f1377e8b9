"""Trigger condition -> raw status lookup tables.

Producers report statuses from several sources (gateway webhooks, order
updates, carrier tracking). Each rule condition accepts a set of raw values;
everything a producer may legitimately send is listed in the known
vocabularies so unfamiliar values can be flagged instead of silently ignored.
"""

from __future__ import annotations

from typing import Dict, FrozenSet

from notifier.schemas.notification import RuleType

# Payload fields inspected, in order, for the reported status.
STATUS_FIELDS = (
    "new_status",
    "to_status",
    "status",
    "payment_status",
    "shipping_status",
    "delivery_status",
)

PAYMENT_CONDITIONS: Dict[str, FrozenSet[str]] = {
    "paid": frozenset({"paid", "approved"}),
    "payment_approved": frozenset({"approved", "paid", "payment_approved", "confirmed", "authorized"}),
    "pix_generated": frozenset({"pix_generated", "pix_pending", "waiting_pix"}),
    "boleto_generated": frozenset({"boleto_generated", "boleto_pending", "waiting_boleto"}),
    "payment_declined": frozenset({"declined", "refused", "rejected", "payment_declined", "failed"}),
    "payment_expired": frozenset({"expired", "payment_expired", "pix_expired", "boleto_expired"}),
}

SHIPPING_CONDITIONS: Dict[str, FrozenSet[str]] = {
    "posted": frozenset({"posted", "shipped"}),
    "in_transit": frozenset({"in_transit"}),
    "out_for_delivery": frozenset({"out_for_delivery"}),
    "awaiting_pickup": frozenset({"awaiting_pickup", "ready_for_pickup"}),
    "returning": frozenset({"returning", "returned"}),
    "issue": frozenset({"issue", "failed", "delivery_failed", "exception"}),
    "delivered": frozenset({"delivered"}),
}

# Pending-style statuses that, combined with payment_method, mean a pix/boleto was issued.
PENDING_PAYMENT_STATUSES = frozenset({"pending", "awaiting_payment", "waiting_payment"})
PENDING_METHOD_CONDITIONS = {
    "pix_generated": "pix",
    "boleto_generated": "boleto",
}

# Values that are valid but never trigger a condition on their own.
_PAYMENT_PASSIVE = frozenset(
    {"pending", "processing", "awaiting_payment", "waiting_payment", "refunded", "cancelled", "canceled", "chargeback"}
)
_SHIPPING_PASSIVE = frozenset({"pending", "processing", "label_created", "canceled", "cancelled", "unknown"})


def _union(values) -> FrozenSet[str]:
    result: set[str] = set()
    for item in values:
        result |= item
    return frozenset(result)


KNOWN_PAYMENT_STATUSES = _union(PAYMENT_CONDITIONS.values()) | _PAYMENT_PASSIVE
KNOWN_SHIPPING_STATUSES = _union(SHIPPING_CONDITIONS.values()) | _SHIPPING_PASSIVE

CONDITIONS_BY_RULE_TYPE: Dict[RuleType, Dict[str, FrozenSet[str]]] = {
    RuleType.PAYMENT: PAYMENT_CONDITIONS,
    RuleType.SHIPPING: SHIPPING_CONDITIONS,
}

KNOWN_STATUSES_BY_RULE_TYPE: Dict[RuleType, FrozenSet[str]] = {
    RuleType.PAYMENT: KNOWN_PAYMENT_STATUSES,
    RuleType.SHIPPING: KNOWN_SHIPPING_STATUSES,
}


def accepted_statuses(rule_type: RuleType, condition: str | None) -> FrozenSet[str] | None:
    """None when the condition is unknown for this rule type."""
    table = CONDITIONS_BY_RULE_TYPE.get(rule_type, {})
    return table.get((condition or "").strip().lower())


def is_known_status(rule_type: RuleType, status: str) -> bool:
    return status in KNOWN_STATUSES_BY_RULE_TYPE.get(rule_type, frozenset())
