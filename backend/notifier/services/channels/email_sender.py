from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Optional

import httpx

from notifier.core.config import Settings
from notifier.services.channels.base import ChannelSender, SendResult, failure, redact_recipient
from notifier.services.channels.sender_config import EmailSenderConfig, SenderConfigCache
from notifier.services.email_html import render_notification_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmtpConfig:
    host: str
    port: int
    user: Optional[str]
    password: Optional[str]
    use_tls: bool
    timeout: float


def _domain(address: str) -> str:
    return address.rsplit("@", 1)[-1].strip().lower() if "@" in address else ""


def send_email_via_smtp(
    *,
    smtp: SmtpConfig,
    from_email: str,
    from_name: str,
    to_email: str,
    subject: str,
    body_text: str,
    body_html: str,
    reply_to: Optional[str] = None,
) -> None:
    msg = EmailMessage()
    msg["From"] = f"{from_name} <{from_email}>" if from_name else from_email
    msg["To"] = to_email
    msg["Subject"] = subject
    if reply_to:
        msg["Reply-To"] = reply_to
    msg.set_content(body_text)
    msg.add_alternative(body_html, subtype="html")

    context = ssl.create_default_context()

    # Port 465 uses implicit SSL (SMTP_SSL), port 587 uses STARTTLS
    if smtp.port == 465:
        server = smtplib.SMTP_SSL(smtp.host, smtp.port, timeout=smtp.timeout, context=context)
    else:
        server = smtplib.SMTP(smtp.host, smtp.port, timeout=smtp.timeout)
        if smtp.use_tls:
            server.starttls(context=context)
    try:
        if smtp.user and smtp.password:
            server.login(smtp.user, smtp.password)
        server.send_message(msg)
    finally:
        try:
            server.quit()
        except (smtplib.SMTPException, OSError):
            logger.debug("SMTP quit failed after send")


class EmailSender(ChannelSender):
    """Email via SendGrid's HTTP API (default) or SMTP, per the resolved sender config."""

    channel = "email"

    def __init__(self, configs: SenderConfigCache, settings: Settings) -> None:
        self._configs = configs
        self._settings = settings

    def _check_config(self, config: Optional[EmailSenderConfig]) -> Optional[SendResult]:
        if config is None:
            return failure("EMAIL_SENDER_NOT_CONFIGURED", "No verified email sender for tenant or platform")
        if not config.from_email or not config.from_name:
            return failure("EMAIL_SENDER_INCOMPLETE", "Sender name and address are required")
        if not config.verified:
            return failure("EMAIL_SENDER_UNVERIFIED", f"Sender {config.from_email} is not verified")
        if config.sending_domain and _domain(config.from_email) != config.sending_domain.strip().lower():
            return failure(
                "EMAIL_DOMAIN_MISMATCH",
                f"From address domain {_domain(config.from_email)} does not match {config.sending_domain}",
            )
        return None

    def send(self, recipient: str, content: dict[str, Any], *, tenant_id: str) -> SendResult:
        to_email = (recipient or "").strip()
        if "@" not in to_email:
            return failure("INVALID_RECIPIENT", f'Invalid email recipient: "{to_email}"')

        config = self._configs.email_config(tenant_id)
        problem = self._check_config(config)
        if problem is not None:
            return problem

        subject = str(content.get("email_subject") or "")
        body = str(content.get("email_body") or "")
        if not subject and not body:
            return failure("EMAIL_EMPTY_CONTENT", "Rendered email has no subject or body")
        store_name = str(content.get("store_name") or config.from_name)
        body_html = render_notification_email(subject=subject, body=body, store_name=store_name)

        if (config.provider_type or "sendgrid").lower() == "smtp":
            result = self._send_smtp(config, to_email, subject, body, body_html)
        else:
            result = self._send_sendgrid(config, to_email, subject, body_html)

        if result.success:
            logger.info(
                "Email sent: to=%s from=%s system_fallback=%s",
                self._log_recipient(to_email),
                config.from_email,
                config.is_system_fallback,
            )
        return result

    def _log_recipient(self, value: str) -> str:
        return redact_recipient(value) if self._settings.pii_redaction_enabled else value

    def _send_sendgrid(self, config: EmailSenderConfig, to_email: str, subject: str, body_html: str) -> SendResult:
        api_key = self._settings.sendgrid_api_key
        if not api_key:
            return failure("SENDGRID_NOT_CONFIGURED", "SENDGRID_API_KEY is not set")

        message: dict[str, Any] = {
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {"email": config.from_email, "name": config.from_name},
            "subject": subject,
            "content": [{"type": "text/html", "value": body_html}],
        }
        if config.reply_to:
            message["reply_to"] = {"email": config.reply_to}

        try:
            resp = httpx.post(
                self._settings.sendgrid_api_url,
                headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
                json=message,
                timeout=self._settings.notification_send_timeout_seconds,
            )
        except httpx.HTTPError as exc:
            logger.warning("SendGrid request failed: %s", exc)
            return failure("SEND_FAILED", f"SendGrid request failed: {exc}")

        if not resp.is_success:
            return failure(
                "SEND_FAILED",
                f"SendGrid error: {resp.status_code} - {resp.text[:500]}",
                provider_response={"status_code": resp.status_code},
            )

        message_id = resp.headers.get("X-Message-Id")
        return SendResult(
            success=True,
            provider_message_id=message_id,
            provider_response={
                "provider": "sendgrid",
                "message_id": message_id,
                "from_used": config.from_email,
                "is_system_fallback": config.is_system_fallback,
            },
        )

    def _send_smtp(
        self,
        config: EmailSenderConfig,
        to_email: str,
        subject: str,
        body_text: str,
        body_html: str,
    ) -> SendResult:
        settings = self._settings
        if not settings.smtp_host:
            return failure("SMTP_NOT_CONFIGURED", "SMTP_HOST is not set")
        smtp = SmtpConfig(
            host=settings.smtp_host,
            port=int(settings.smtp_port),
            user=settings.smtp_user or None,
            password=settings.smtp_password or None,
            use_tls=settings.smtp_use_tls,
            timeout=settings.notification_send_timeout_seconds,
        )
        try:
            send_email_via_smtp(
                smtp=smtp,
                from_email=config.from_email,
                from_name=config.from_name,
                to_email=to_email,
                subject=subject,
                body_text=body_text,
                body_html=body_html,
                reply_to=config.reply_to,
            )
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP send failed: %s", exc)
            return failure("SEND_FAILED", f"SMTP error: {exc}")
        return SendResult(
            success=True,
            provider_response={
                "provider": "smtp",
                "from_used": config.from_email,
                "is_system_fallback": config.is_system_fallback,
            },
        )
