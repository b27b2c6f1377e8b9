"""Decides whether a notification rule applies to an inbox event.

Every rule kind is a variant class registered under its ``RuleType``. The
module refuses to import when a ``RuleType`` has no registered variant.
Matching is pure: it reads only the rule, the event and the injected
``ConversionCheck`` collaborator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

from notifier.models.notification import EventInbox, NotificationRule
from notifier.schemas.notification import DedupeScope, RuleType
from notifier.services.payload_path import MISSING, first_text, get_path
from notifier.services.status_mapping import (
    PENDING_METHOD_CONDITIONS,
    PENDING_PAYMENT_STATUSES,
    STATUS_FIELDS,
    accepted_statuses,
    is_known_status,
)
from notifier.utils.clock import as_utc

logger = logging.getLogger(__name__)

# (tenant_id, customer_email, since) -> True when a completed order exists.
ConversionCheck = Callable[[str, str, Optional[datetime]], bool]


@dataclass(frozen=True)
class MatchResult:
    matched: bool
    entity_type: str = ""
    entity_id: str = ""
    reason: str = ""
    # Raw status (or condition) outside the known vocabulary, flagged for the caller.
    unmapped: Optional[str] = None


def no_match(reason: str, *, unmapped: Optional[str] = None) -> MatchResult:
    return MatchResult(matched=False, reason=reason, unmapped=unmapped)


def resolve_rule_type(rule: NotificationRule) -> RuleType:
    raw = (rule.rule_type or "").strip().lower()
    if not raw:
        return RuleType.LEGACY
    return RuleType(raw)


def event_time(event: EventInbox) -> Optional[datetime]:
    return as_utc(event.occurred_at or event.received_at)


def event_product_ids(payload: dict) -> set[str]:
    ids: set[str] = set()
    items = payload.get("items")
    if isinstance(items, list):
        for item in items:
            if isinstance(item, dict) and item.get("product_id") is not None:
                ids.add(str(item["product_id"]))
    raw_ids = payload.get("product_ids")
    if isinstance(raw_ids, list):
        ids.update(str(value) for value in raw_ids if value is not None)
    return ids


class RuleKind:
    """Base variant: shared guards, then the kind-specific check."""

    rule_type: RuleType
    event_types: frozenset = frozenset()
    entity_type: str = "event"
    entity_paths: tuple = ()
    default_dedupe_scope: DedupeScope = DedupeScope.NONE

    def accepts_event_type(self, rule: NotificationRule, event_type: str) -> bool:
        return event_type in self.event_types

    def match(
        self,
        rule: NotificationRule,
        event: EventInbox,
        *,
        conversion_check: Optional[ConversionCheck] = None,
    ) -> MatchResult:
        if not rule.is_enabled:
            return no_match("rule_disabled")
        if str(rule.tenant_id) != str(event.tenant_id):
            return no_match("tenant_mismatch")

        effective_from = as_utc(rule.effective_from)
        if effective_from is not None:
            occurred = event_time(event)
            if occurred is None or occurred < effective_from:
                return no_match("before_effective_from")

        event_type = (event.event_type or "").strip()
        if not self.accepts_event_type(rule, event_type):
            return no_match("event_type")

        payload = event.payload
        if (rule.product_scope or "all") == "specific":
            wanted = {str(value) for value in (rule.product_ids or [])}
            if not wanted & event_product_ids(payload):
                return no_match("product_scope")

        result = self.check(rule, event, payload, conversion_check=conversion_check)
        if result is not None:
            return result

        entity_type, entity_id = self.entity(rule, event, payload)
        return MatchResult(matched=True, entity_type=entity_type, entity_id=entity_id)

    def check(
        self,
        rule: NotificationRule,
        event: EventInbox,
        payload: dict,
        *,
        conversion_check: Optional[ConversionCheck] = None,
    ) -> Optional[MatchResult]:
        """Kind-specific condition; None means matched."""
        return None

    def entity(self, rule: NotificationRule, event: EventInbox, payload: dict) -> tuple[str, str]:
        entity_id = first_text(payload, self.entity_paths)
        if entity_id:
            return self.entity_type, entity_id
        return "event", str(event.id)

    def dedupe_scope(self, rule: NotificationRule) -> DedupeScope:
        raw = (rule.dedupe_scope or "").strip().lower()
        if raw == DedupeScope.NONE.value:
            return DedupeScope.NONE
        if not raw:
            return self.default_dedupe_scope
        try:
            return DedupeScope(raw)
        except ValueError:
            return self.default_dedupe_scope


class _StatusRule(RuleKind):
    def reported_statuses(self, payload: dict) -> list[str]:
        statuses = []
        for field in STATUS_FIELDS:
            value = get_path(payload, field)
            if value is MISSING or value is None:
                continue
            text = str(value).strip().lower()
            if text and text not in statuses:
                statuses.append(text)
        return statuses

    def condition_matches(self, condition: str, statuses: list[str], payload: dict) -> bool:
        accepted = accepted_statuses(self.rule_type, condition) or frozenset()
        return any(status in accepted for status in statuses)

    def check(self, rule, event, payload, *, conversion_check=None):
        condition = (rule.trigger_condition or "").strip().lower()
        if accepted_statuses(self.rule_type, condition) is None:
            return no_match("unknown_condition", unmapped=condition or "<empty>")

        statuses = self.reported_statuses(payload)
        if self.condition_matches(condition, statuses, payload):
            return None

        unknown = [status for status in statuses if not is_known_status(self.rule_type, status)]
        if unknown:
            return no_match("unmapped_status", unmapped=unknown[0])
        return no_match("condition")


class PaymentRule(_StatusRule):
    rule_type = RuleType.PAYMENT
    event_types = frozenset(
        {"payment_status_changed", "payment.status_changed", "order.payment_status_changed", "order.paid"}
    )
    entity_type = "order"
    entity_paths = ("order_id", "order.id")
    default_dedupe_scope = DedupeScope.ORDER

    def condition_matches(self, condition, statuses, payload):
        if super().condition_matches(condition, statuses, payload):
            return True
        method = PENDING_METHOD_CONDITIONS.get(condition)
        if not method:
            return False
        payment_method = first_text(payload, ("payment_method", "order.payment_method")).lower()
        return payment_method == method and any(status in PENDING_PAYMENT_STATUSES for status in statuses)


class ShippingRule(_StatusRule):
    rule_type = RuleType.SHIPPING
    event_types = frozenset(
        {"shipment.status_changed", "shipment_status_changed", "order.shipping_status_changed", "order.shipped"}
    )
    entity_type = "order"
    entity_paths = ("order_id", "order.id")
    default_dedupe_scope = DedupeScope.ORDER


class AbandonedCheckoutRule(RuleKind):
    rule_type = RuleType.ABANDONED_CHECKOUT
    event_types = frozenset({"checkout.abandoned", "checkout_abandoned", "cart.abandoned"})
    entity_type = "checkout_session"
    entity_paths = ("session_id", "checkout_session_id", "cart_id", "cart.id")
    default_dedupe_scope = DedupeScope.CART

    def check(self, rule, event, payload, *, conversion_check=None):
        if conversion_check is None:
            return None
        email = first_text(payload, ("customer_email", "customer.email", "email")).lower()
        if not email:
            return None
        started_raw = first_text(payload, ("started_at", "checkout_started_at"))
        since = _parse_datetime(started_raw) or event_time(event)
        if conversion_check(str(event.tenant_id), email, since):
            return no_match("converted")
        return None


class PostSaleRule(RuleKind):
    rule_type = RuleType.POST_SALE
    event_types = frozenset({"customer.first_order", "customer_first_order", "order.first_order"})
    entity_type = "customer"
    entity_paths = ("customer_id", "customer.id")
    default_dedupe_scope = DedupeScope.CUSTOMER


_LEGACY_SCOPE_PATHS: Dict[DedupeScope, tuple] = {
    DedupeScope.ORDER: ("order_id", "order.id"),
    DedupeScope.CUSTOMER: ("customer_id", "customer.id"),
    DedupeScope.CART: ("cart_id", "cart.id"),
    DedupeScope.CHECKOUT_SESSION: ("session_id", "checkout_session_id"),
}


def _compare(op: str, actual: Any, expected: Any) -> bool:
    present = actual is not MISSING and actual is not None
    if op == "exists":
        return present if expected is None or bool(expected) else not present
    if actual is MISSING:
        return False
    if op == "eq":
        return actual == expected
    if op == "neq":
        return actual != expected
    if op in ("gte", "lte"):
        numeric = (int, float)
        if isinstance(actual, bool) or isinstance(expected, bool):
            return False
        if not isinstance(actual, numeric) or not isinstance(expected, numeric):
            return False
        return actual >= expected if op == "gte" else actual <= expected
    if op == "contains":
        if isinstance(actual, str) and isinstance(expected, str):
            return expected in actual
        if isinstance(actual, list):
            return expected in actual
        return False
    logger.warning("Unknown filter operator: %s", op)
    return False


def evaluate_filters(payload: dict, filters: Optional[Iterable[dict]]) -> bool:
    for condition in filters or []:
        if not isinstance(condition, dict):
            return False
        actual = get_path(payload, str(condition.get("path") or ""))
        if not _compare(str(condition.get("op") or ""), actual, condition.get("value")):
            return False
    return True


class LegacyRule(RuleKind):
    """Declarative rule: trigger_event_type equality plus ANDed filters."""

    rule_type = RuleType.LEGACY
    default_dedupe_scope = DedupeScope.NONE

    def accepts_event_type(self, rule, event_type):
        return bool(rule.trigger_event_type) and event_type == rule.trigger_event_type

    def check(self, rule, event, payload, *, conversion_check=None):
        if not evaluate_filters(payload, rule.filters):
            return no_match("filters")
        return None

    def entity(self, rule, event, payload):
        subject = payload.get("subject")
        if isinstance(subject, dict) and subject.get("id"):
            scope = self.dedupe_scope(rule)
            fallback_type = scope.value if scope != DedupeScope.NONE else "subject"
            return str(subject.get("type") or fallback_type), str(subject["id"])
        scope = self.dedupe_scope(rule)
        paths = _LEGACY_SCOPE_PATHS.get(scope, ())
        entity_id = first_text(payload, paths)
        if entity_id:
            return scope.value, entity_id
        return "event", str(event.id)


def _parse_datetime(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


RULE_KINDS: Dict[RuleType, RuleKind] = {
    kind.rule_type: kind
    for kind in (PaymentRule(), ShippingRule(), AbandonedCheckoutRule(), PostSaleRule(), LegacyRule())
}

_unregistered = [rule_type.value for rule_type in RuleType if rule_type not in RULE_KINDS]
if _unregistered:
    raise RuntimeError(f"Rule kinds missing for: {', '.join(_unregistered)}")


def kind_for(rule: NotificationRule) -> RuleKind:
    return RULE_KINDS[resolve_rule_type(rule)]


def match(
    rule: NotificationRule,
    event: EventInbox,
    *,
    conversion_check: Optional[ConversionCheck] = None,
) -> MatchResult:
    try:
        kind = kind_for(rule)
    except ValueError:
        return no_match("unknown_rule_type", unmapped=str(rule.rule_type))
    return kind.match(rule, event, conversion_check=conversion_check)
