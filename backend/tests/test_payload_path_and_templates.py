"""
Tests for the dot-path accessor and template rendering.

Covers:
  - MISSING sentinel for absent segments, None for explicit nulls
  - List indexing in paths
  - first_present / first_text skipping blanks
  - Template context (first name, money formatting, product names, store fallback)
  - Unresolved placeholders stay verbatim, dotted paths fall back to the payload
"""

from __future__ import annotations

from notifier.services.payload_path import MISSING, first_present, first_text, get_path
from notifier.services.template_render import build_context, format_money, render_template


# ═══════════════════════════════════════════════════════════════
# get_path
# ═══════════════════════════════════════════════════════════════


def test_get_path_nested_value():
    assert get_path({"customer": {"email": "a@b.com"}}, "customer.email") == "a@b.com"


def test_get_path_missing_segment_returns_sentinel():
    value = get_path({"customer": {}}, "customer.email")
    assert value is MISSING
    assert not value


def test_get_path_explicit_null_is_not_missing():
    assert get_path({"tracking_code": None}, "tracking_code") is None


def test_get_path_through_scalar_is_missing():
    assert get_path({"customer": "Ana"}, "customer.email") is MISSING


def test_get_path_list_index():
    payload = {"items": [{"product_id": "p1"}, {"product_id": "p2"}]}
    assert get_path(payload, "items.1.product_id") == "p2"
    assert get_path(payload, "items.5.product_id") is MISSING
    assert get_path(payload, "items.x") is MISSING


def test_get_path_empty_path():
    assert get_path({"a": 1}, "") is MISSING


def test_first_present_skips_blank_and_null():
    payload = {"customer_email": "  ", "customer": {"email": None}, "email": "x@y.com"}
    assert first_present(payload, ("customer_email", "customer.email", "email")) == "x@y.com"
    assert first_text({}, ("a", "b")) == ""


# ═══════════════════════════════════════════════════════════════
# Rendering
# ═══════════════════════════════════════════════════════════════


def test_format_money_brazilian_style():
    assert format_money(1234.5) == "R$ 1.234,50"
    assert format_money("99") == "R$ 99,00"
    assert format_money("n/a") == "n/a"


def test_build_context_derives_variables():
    payload = {
        "customer_name": "Ana Maria Souza",
        "customer_email": "ana@example.com",
        "order_total": 10,
        "items": [{"product_name": "Camiseta"}, {"name": "Boné"}],
    }
    context = build_context(payload, store_name="Loja X")
    assert context["customer_first_name"] == "Ana"
    assert context["order_total"] == "R$ 10,00"
    assert context["product_names"] == "Camiseta, Boné"
    assert context["store_name"] == "Loja X"


def test_build_context_payload_store_name_wins():
    context = build_context({"store_name": "Minha Loja"}, store_name="Default")
    assert context["store_name"] == "Minha Loja"


def test_render_template_replaces_known_and_keeps_unknown():
    out = render_template("Oi {{customer_first_name}}, {{ unknown_var }}!", {"customer_first_name": "Ana"})
    assert out == "Oi Ana, {{ unknown_var }}!"


def test_render_template_dotted_path_from_payload():
    payload = {"shipment": {"carrier": "Correios"}}
    assert render_template("Via {{shipment.carrier}}", {}, payload) == "Via Correios"


def test_render_template_null_and_object_values_stay_verbatim():
    payload = {"tracking_code": None, "order": {"id": 1}}
    assert render_template("{{tracking_code}} {{order}}", {}, payload) == "{{tracking_code}} {{order}}"


def test_render_template_empty_template():
    assert render_template(None, {"a": 1}) == ""
    assert render_template("", {"a": 1}) == ""
