from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from notifier.services.payload_path import MISSING, first_present, get_path

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")

# context variable -> payload paths tried in order
_CONTEXT_PATHS: Dict[str, tuple] = {
    "customer_name": ("customer_name", "customer.name", "customer.full_name", "name"),
    "customer_email": ("customer_email", "customer.email", "email"),
    "customer_phone": ("customer_phone", "customer.phone", "phone"),
    "order_id": ("order_id", "order.id"),
    "order_number": ("order_number", "order.order_number", "order.number"),
    "payment_method": ("payment_method", "order.payment_method"),
    "payment_status": ("payment_status", "new_status", "status"),
    "shipping_status": ("shipping_status", "delivery_status", "to_status", "new_status"),
    "tracking_code": ("tracking_code", "shipment.tracking_code", "order.tracking_code"),
    "tracking_url": ("tracking_url", "shipment.tracking_url"),
    "carrier": ("carrier", "shipment.carrier"),
    "pix_link": ("pix_link", "pix.link", "pix_url"),
    "pix_code": ("pix_code", "pix.qr_code", "pix_copy_paste"),
    "boleto_link": ("boleto_link", "boleto.link", "boleto_url"),
    "checkout_link": ("checkout_link", "checkout_url", "recovery_url"),
    "store_name": ("store_name", "store.name"),
}


def format_money(value: Any) -> str:
    try:
        amount = Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        return str(value)
    whole, cents = f"{amount:,.2f}".split(".")
    return f"R$ {whole.replace(',', '.')},{cents}"


def build_context(payload: Dict[str, Any], *, store_name: Optional[str] = None) -> Dict[str, Any]:
    """Flat variable map used by rule templates."""
    context: Dict[str, Any] = {}
    for key, paths in _CONTEXT_PATHS.items():
        value = first_present(payload, paths)
        if value is not MISSING:
            context[key] = value

    name = context.get("customer_name")
    if isinstance(name, str) and name.strip():
        context["customer_first_name"] = name.strip().split(" ")[0]

    total = first_present(payload, ("order_total", "total", "order.total", "total_estimated"))
    if total is not MISSING:
        context["order_total"] = format_money(total)

    items = payload.get("items")
    if isinstance(items, list):
        names = [
            str(item.get("product_name") or item.get("name"))
            for item in items
            if isinstance(item, dict) and (item.get("product_name") or item.get("name"))
        ]
        if names:
            context["product_names"] = ", ".join(names)

    if "store_name" not in context and store_name:
        context["store_name"] = store_name
    return context


def render_template(template: Optional[str], context: Dict[str, Any], payload: Optional[Dict[str, Any]] = None) -> str:
    """Replace {{name}} / {{dotted.path}} placeholders; unresolved ones stay verbatim."""
    if not template:
        return ""

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        value = context.get(key, MISSING)
        if value is MISSING and payload is not None:
            value = get_path(payload, key)
        if value is MISSING or value is None:
            return match.group(0)
        if isinstance(value, (dict, list)):
            return match.group(0)
        return str(value)

    return _PLACEHOLDER_RE.sub(_replace, template)
