from __future__ import annotations

import logging
import re
from typing import Any

import httpx
from twilio.base.exceptions import TwilioRestException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from notifier.core.config import Settings
from notifier.services.channels.base import ChannelSender, SendResult, failure, redact_recipient
from notifier.services.channels.sender_config import SenderConfigCache, WhatsAppSenderConfig

logger = logging.getLogger(__name__)

_NON_DIGITS_RE = re.compile(r"\D")

META_GRAPH_URL = "https://graph.facebook.com/{version}/{phone_number_id}/messages"


def normalize_phone(value: str, *, country_code: str = "55") -> str:
    """Digits only; 10/11-digit national numbers get the country code. Empty when < 10 digits."""
    digits = _NON_DIGITS_RE.sub("", value or "")
    if len(digits) < 10:
        return ""
    if len(digits) in (10, 11) and country_code:
        digits = f"{country_code}{digits}"
    return digits


class WhatsAppSender(ChannelSender):
    """WhatsApp text messages through the tenant's connected provider (Twilio or Meta Cloud API)."""

    channel = "whatsapp"

    def __init__(self, configs: SenderConfigCache, settings: Settings) -> None:
        self._configs = configs
        self._settings = settings

    def send(self, recipient: str, content: dict[str, Any], *, tenant_id: str) -> SendResult:
        phone = normalize_phone(recipient, country_code=self._settings.whatsapp_default_country_code)
        if not phone:
            return failure("INVALID_RECIPIENT", f'Invalid phone number: "{recipient}"')

        message = str(content.get("whatsapp_message") or "").strip()
        if not message:
            return failure("WHATSAPP_MISSING_FIELDS", "Rendered WhatsApp message is empty")

        config = self._configs.whatsapp_config(tenant_id)
        if config is None:
            return failure("WHATSAPP_NOT_CONFIGURED", "No connected WhatsApp configuration for tenant")

        if config.provider == "meta":
            result = self._send_meta(config, phone, message)
        elif config.provider == "twilio":
            result = self._send_twilio(config, phone, message)
        else:
            return failure("WHATSAPP_PROVIDER_UNSUPPORTED", f"Unsupported WhatsApp provider: {config.provider}")

        if result.success:
            log_to = redact_recipient(phone) if self._settings.pii_redaction_enabled else phone
            logger.info("WhatsApp sent: to=%s provider=%s id=%s", log_to, config.provider, result.provider_message_id)
        return result

    def _send_twilio(self, config: WhatsAppSenderConfig, phone: str, message: str) -> SendResult:
        if not config.account_sid or not config.auth_token:
            return failure("WHATSAPP_NOT_CONFIGURED", "Twilio credentials missing")
        from_number = (config.phone_number or "").strip()
        if not from_number:
            return failure("WHATSAPP_FROM_NUMBER_NOT_CONFIGURED", "Twilio WhatsApp sender number missing")

        # Both numbers need the whatsapp: prefix
        if not from_number.startswith("whatsapp:"):
            from_number = f"whatsapp:+{_NON_DIGITS_RE.sub('', from_number)}"
        to_number = f"whatsapp:+{phone}"

        client = Client(
            config.account_sid,
            config.auth_token,
            http_client=TwilioHttpClient(timeout=self._settings.notification_send_timeout_seconds),
        )
        try:
            sent = client.messages.create(to=to_number, from_=from_number, body=message)
        except TwilioRestException as exc:
            return failure(
                "SEND_FAILED",
                f"Twilio error: {exc.status} - {exc.msg}",
                provider_response={"status_code": exc.status, "code": exc.code},
            )
        except OSError as exc:
            return failure("SEND_FAILED", f"Twilio request failed: {exc}")
        return SendResult(
            success=True,
            provider_message_id=sent.sid,
            provider_response={"provider": "twilio", "sid": sent.sid, "status": getattr(sent, "status", None)},
        )

    def _send_meta(self, config: WhatsAppSenderConfig, phone: str, message: str) -> SendResult:
        if not config.phone_number_id or not config.access_token:
            return failure("WHATSAPP_NOT_CONFIGURED", "Meta phone_number_id/access_token missing")

        url = META_GRAPH_URL.format(
            version=self._settings.meta_graph_api_version,
            phone_number_id=config.phone_number_id,
        )
        try:
            resp = httpx.post(
                url,
                headers={"Authorization": f"Bearer {config.access_token}", "Content-Type": "application/json"},
                json={
                    "messaging_product": "whatsapp",
                    "recipient_type": "individual",
                    "to": phone,
                    "type": "text",
                    "text": {"preview_url": False, "body": message},
                },
                timeout=self._settings.notification_send_timeout_seconds,
            )
        except httpx.HTTPError as exc:
            return failure("SEND_FAILED", f"Meta request failed: {exc}")

        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text[:500]}

        if not resp.is_success:
            error = data.get("error", {}) if isinstance(data, dict) else {}
            detail = error.get("message") if isinstance(error, dict) else None
            return failure(
                "SEND_FAILED",
                f"Meta error: {resp.status_code} - {detail or resp.text[:300]}",
                provider_response={"status_code": resp.status_code, "body": data},
            )

        message_id = None
        messages = data.get("messages") if isinstance(data, dict) else None
        if isinstance(messages, list) and messages and isinstance(messages[0], dict):
            message_id = messages[0].get("id")
        return SendResult(
            success=True,
            provider_message_id=message_id,
            provider_response={"provider": "meta", "message_id": message_id},
        )
