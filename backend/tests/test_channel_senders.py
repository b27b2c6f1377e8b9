"""
Tests for the email and WhatsApp channel senders.

Covers:
  - Email sender resolution: tenant config, system fallback, not configured
  - Domain mismatch / incomplete sender rejected before any provider call
  - SendGrid request shape, message id, provider errors
  - SMTP provider path
  - Phone normalization
  - WhatsApp via Twilio (client mocked) and Meta Cloud API (httpx mocked)
  - Meta preferred over Twilio, disconnected configs ignored
  - Email HTML layout escaping and markdown subset
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import pytest
from twilio.base.exceptions import TwilioRestException

from conftest import TENANT_ID
from notifier.core.config import Settings
from notifier.models.notification import EmailProviderConfig, SystemEmailConfig, WhatsAppConfig
from notifier.services.channels.base import redact_recipient
from notifier.services.channels.email_sender import EmailSender
from notifier.services.channels.sender_config import SenderConfigCache
from notifier.services.channels.whatsapp_sender import WhatsAppSender, normalize_phone
from notifier.services.email_html import markdown_to_html, render_notification_email

CONTENT = {
    "email_subject": "Pedido 1001 aprovado",
    "email_body": "Oi **Ana**, obrigado!",
    "whatsapp_message": "Oi Ana! Pedido 1001 aprovado.",
    "store_name": "Loja Azul",
}


def _settings(**overrides) -> Settings:
    values = {"sendgrid_api_key": "SG.test", "pii_redaction_enabled": True}
    values.update(overrides)
    return Settings(**values)


def _tenant_email_config(db, **overrides):
    values = {
        "tenant_id": TENANT_ID,
        "provider_type": "sendgrid",
        "from_name": "Loja Azul",
        "from_email": "contato@lojaazul.com.br",
        "reply_to": "sac@lojaazul.com.br",
        "sending_domain": "lojaazul.com.br",
        "verification_status": "verified",
    }
    values.update(overrides)
    db.add(EmailProviderConfig(**values))
    db.commit()


def _system_email_config(db, **overrides):
    values = {
        "from_name": "Plataforma",
        "from_email": "no-reply@plataforma.com",
        "sending_domain": "plataforma.com",
        "verification_status": "verified",
    }
    values.update(overrides)
    db.add(SystemEmailConfig(**values))
    db.commit()


def _email_sender(db, **settings_overrides) -> EmailSender:
    return EmailSender(SenderConfigCache(db), _settings(**settings_overrides))


def _sendgrid_ok(message_id="sg-123"):
    return httpx.Response(202, headers={"X-Message-Id": message_id})


# ═══════════════════════════════════════════════════════════════
# Email
# ═══════════════════════════════════════════════════════════════


def test_email_via_sendgrid_with_tenant_sender(db):
    _tenant_email_config(db)

    with patch("notifier.services.channels.email_sender.httpx.post", return_value=_sendgrid_ok()) as post:
        result = _email_sender(db).send("ana@example.com", CONTENT, tenant_id=TENANT_ID)

    assert result.success is True
    assert result.provider_message_id == "sg-123"
    assert result.provider_response["is_system_fallback"] is False

    body = post.call_args.kwargs["json"]
    assert body["from"] == {"email": "contato@lojaazul.com.br", "name": "Loja Azul"}
    assert body["personalizations"] == [{"to": [{"email": "ana@example.com"}]}]
    assert body["subject"] == "Pedido 1001 aprovado"
    assert body["reply_to"] == {"email": "sac@lojaazul.com.br"}
    assert "<strong>Ana</strong>" in body["content"][0]["value"]
    assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer SG.test"


def test_email_falls_back_to_system_sender(db):
    _tenant_email_config(db, verification_status="pending", dns_all_ok=False)
    _system_email_config(db)

    with patch("notifier.services.channels.email_sender.httpx.post", return_value=_sendgrid_ok()) as post:
        result = _email_sender(db).send("ana@example.com", CONTENT, tenant_id=TENANT_ID)

    assert result.success is True
    assert result.provider_response["is_system_fallback"] is True
    assert post.call_args.kwargs["json"]["from"]["email"] == "no-reply@plataforma.com"


def test_email_dns_ok_tenant_sender_is_usable(db):
    _tenant_email_config(db, verification_status="pending", dns_all_ok=True)
    _system_email_config(db)

    with patch("notifier.services.channels.email_sender.httpx.post", return_value=_sendgrid_ok()) as post:
        result = _email_sender(db).send("ana@example.com", CONTENT, tenant_id=TENANT_ID)

    assert result.success is True
    assert post.call_args.kwargs["json"]["from"]["email"] == "contato@lojaazul.com.br"


def test_email_not_configured(db):
    _system_email_config(db, verification_status="pending")
    with patch("notifier.services.channels.email_sender.httpx.post") as post:
        result = _email_sender(db).send("ana@example.com", CONTENT, tenant_id=TENANT_ID)
    assert result.success is False
    assert result.error_code == "EMAIL_SENDER_NOT_CONFIGURED"
    post.assert_not_called()


def test_email_domain_mismatch(db):
    _tenant_email_config(db, from_email="contato@outrodominio.com")
    with patch("notifier.services.channels.email_sender.httpx.post") as post:
        result = _email_sender(db).send("ana@example.com", CONTENT, tenant_id=TENANT_ID)
    assert result.error_code == "EMAIL_DOMAIN_MISMATCH"
    post.assert_not_called()


def test_email_incomplete_sender(db):
    _tenant_email_config(db, from_name=None)
    result = _email_sender(db).send("ana@example.com", CONTENT, tenant_id=TENANT_ID)
    assert result.error_code == "EMAIL_SENDER_INCOMPLETE"


@pytest.mark.parametrize("recipient", ["", "ana.example.com", "   "])
def test_email_invalid_recipient(db, recipient):
    result = _email_sender(db).send(recipient, CONTENT, tenant_id=TENANT_ID)
    assert result.error_code == "INVALID_RECIPIENT"


def test_email_empty_content(db):
    _tenant_email_config(db)
    result = _email_sender(db).send("ana@example.com", {"store_name": "x"}, tenant_id=TENANT_ID)
    assert result.error_code == "EMAIL_EMPTY_CONTENT"


def test_sendgrid_key_missing(db):
    _tenant_email_config(db)
    result = _email_sender(db, sendgrid_api_key="").send("ana@example.com", CONTENT, tenant_id=TENANT_ID)
    assert result.error_code == "SENDGRID_NOT_CONFIGURED"


def test_sendgrid_error_response(db):
    _tenant_email_config(db)
    response = httpx.Response(503, text="service unavailable")
    with patch("notifier.services.channels.email_sender.httpx.post", return_value=response):
        result = _email_sender(db).send("ana@example.com", CONTENT, tenant_id=TENANT_ID)
    assert result.success is False
    assert result.error_code == "SEND_FAILED"
    assert "503" in result.error
    assert result.provider_response == {"status_code": 503}


def test_sendgrid_transport_error(db):
    _tenant_email_config(db)
    with patch(
        "notifier.services.channels.email_sender.httpx.post",
        side_effect=httpx.ConnectTimeout("timed out"),
    ):
        result = _email_sender(db).send("ana@example.com", CONTENT, tenant_id=TENANT_ID)
    assert result.error_code == "SEND_FAILED"
    assert "timed out" in result.error


def test_email_via_smtp(db):
    _tenant_email_config(db, provider_type="smtp")
    with patch("notifier.services.channels.email_sender.send_email_via_smtp") as smtp_send:
        result = _email_sender(db, smtp_host="smtp.lojaazul.com.br", smtp_port=465).send(
            "ana@example.com", CONTENT, tenant_id=TENANT_ID
        )

    assert result.success is True
    assert result.provider_response["provider"] == "smtp"
    kwargs = smtp_send.call_args.kwargs
    assert kwargs["smtp"].host == "smtp.lojaazul.com.br"
    assert kwargs["smtp"].port == 465
    assert kwargs["to_email"] == "ana@example.com"
    assert kwargs["body_text"] == "Oi **Ana**, obrigado!"
    assert kwargs["reply_to"] == "sac@lojaazul.com.br"


def test_smtp_host_missing(db):
    _tenant_email_config(db, provider_type="smtp")
    result = _email_sender(db, smtp_host="").send("ana@example.com", CONTENT, tenant_id=TENANT_ID)
    assert result.error_code == "SMTP_NOT_CONFIGURED"


# ═══════════════════════════════════════════════════════════════
# WhatsApp
# ═══════════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("(11) 98765-4321", "5511987654321"),
        ("11 3456-7890", "551134567890"),
        ("+55 11 98765-4321", "5511987654321"),
        ("+351 912 345 678", "351912345678"),
        ("98765-43", ""),
        ("", ""),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def _whatsapp_config(db, **overrides):
    values = {
        "tenant_id": TENANT_ID,
        "provider": "twilio",
        "is_enabled": True,
        "connection_status": "connected",
        "phone_number": "+55 11 90000-0000",
        "account_sid": "AC123",
        "auth_token": "secret",
    }
    values.update(overrides)
    db.add(WhatsAppConfig(**values))
    db.commit()


def _whatsapp_sender(db) -> WhatsAppSender:
    return WhatsAppSender(SenderConfigCache(db), _settings())


def test_whatsapp_via_twilio(db):
    _whatsapp_config(db)
    client = MagicMock()
    client.messages.create.return_value = MagicMock(sid="SM123", status="queued")

    with patch("notifier.services.channels.whatsapp_sender.Client", return_value=client) as client_cls, patch(
        "notifier.services.channels.whatsapp_sender.TwilioHttpClient"
    ):
        result = _whatsapp_sender(db).send("(11) 98765-4321", CONTENT, tenant_id=TENANT_ID)

    assert result.success is True
    assert result.provider_message_id == "SM123"
    assert client_cls.call_args.args[:2] == ("AC123", "secret")
    client.messages.create.assert_called_once_with(
        to="whatsapp:+5511987654321",
        from_="whatsapp:+5511900000000",
        body="Oi Ana! Pedido 1001 aprovado.",
    )


def test_whatsapp_twilio_error(db):
    _whatsapp_config(db)
    client = MagicMock()
    client.messages.create.side_effect = TwilioRestException(400, "/Messages", msg="Invalid To", code=21211)

    with patch("notifier.services.channels.whatsapp_sender.Client", return_value=client), patch(
        "notifier.services.channels.whatsapp_sender.TwilioHttpClient"
    ):
        result = _whatsapp_sender(db).send("(11) 98765-4321", CONTENT, tenant_id=TENANT_ID)

    assert result.success is False
    assert result.error_code == "SEND_FAILED"
    assert result.provider_response == {"status_code": 400, "code": 21211}


def test_whatsapp_twilio_without_from_number(db):
    _whatsapp_config(db, phone_number=None)
    result = _whatsapp_sender(db).send("(11) 98765-4321", CONTENT, tenant_id=TENANT_ID)
    assert result.error_code == "WHATSAPP_FROM_NUMBER_NOT_CONFIGURED"


def test_whatsapp_via_meta_preferred(db):
    _whatsapp_config(db)
    _whatsapp_config(
        db,
        provider="meta",
        account_sid=None,
        auth_token=None,
        phone_number_id="10987",
        access_token="EAAG-token",
    )
    response = httpx.Response(200, json={"messages": [{"id": "wamid.abc"}]})

    with patch("notifier.services.channels.whatsapp_sender.httpx.post", return_value=response) as post, patch(
        "notifier.services.channels.whatsapp_sender.Client"
    ) as client_cls:
        result = _whatsapp_sender(db).send("(11) 98765-4321", CONTENT, tenant_id=TENANT_ID)

    assert result.success is True
    assert result.provider_message_id == "wamid.abc"
    client_cls.assert_not_called()
    assert post.call_args.args[0] == "https://graph.facebook.com/v21.0/10987/messages"
    payload = post.call_args.kwargs["json"]
    assert payload["to"] == "5511987654321"
    assert payload["text"]["body"] == "Oi Ana! Pedido 1001 aprovado."


def test_whatsapp_meta_error(db):
    _whatsapp_config(db, provider="meta", phone_number_id="10987", access_token="tok")
    response = httpx.Response(401, json={"error": {"message": "Invalid OAuth access token"}})
    with patch("notifier.services.channels.whatsapp_sender.httpx.post", return_value=response):
        result = _whatsapp_sender(db).send("(11) 98765-4321", CONTENT, tenant_id=TENANT_ID)
    assert result.error_code == "SEND_FAILED"
    assert "Invalid OAuth access token" in result.error


def test_whatsapp_disconnected_config_is_ignored(db):
    _whatsapp_config(db, connection_status="disconnected")
    result = _whatsapp_sender(db).send("(11) 98765-4321", CONTENT, tenant_id=TENANT_ID)
    assert result.error_code == "WHATSAPP_NOT_CONFIGURED"


def test_whatsapp_invalid_recipient_and_empty_message(db):
    _whatsapp_config(db)
    sender = _whatsapp_sender(db)
    assert sender.send("1234", CONTENT, tenant_id=TENANT_ID).error_code == "INVALID_RECIPIENT"
    empty = sender.send("(11) 98765-4321", {"whatsapp_message": "  "}, tenant_id=TENANT_ID)
    assert empty.error_code == "WHATSAPP_MISSING_FIELDS"


def test_redact_recipient():
    assert redact_recipient("ana@example.com") == "a***@example.com"
    assert redact_recipient("5511987654321") == "***321"
    assert redact_recipient("") == ""


# ═══════════════════════════════════════════════════════════════
# Email layout
# ═══════════════════════════════════════════════════════════════


def test_markdown_subset_is_escaped_first():
    out = markdown_to_html("<script>x</script> **Ana** [Rastrear](https://t.example/AB1)\nlinha 2")
    assert "<script>" not in out
    assert "&lt;script&gt;" in out
    assert "<strong>Ana</strong>" in out
    assert 'href="https://t.example/AB1"' in out
    assert out.endswith("<br>linha 2")


def test_render_notification_email_layout():
    html = render_notification_email(
        subject="Pedido <1001>",
        body="Oi",
        store_name="Loja & Cia",
        preheader="Seu pedido saiu",
    )
    assert "<title>Pedido &lt;1001&gt;</title>" in html
    assert "Enviado por Loja &amp; Cia" in html
    assert "Seu pedido saiu" in html
