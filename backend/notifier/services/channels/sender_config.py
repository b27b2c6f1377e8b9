from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from notifier.models.notification import EmailProviderConfig, SystemEmailConfig, WhatsAppConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailSenderConfig:
    provider_type: str
    from_name: str
    from_email: str
    reply_to: Optional[str]
    sending_domain: Optional[str]
    verified: bool
    is_system_fallback: bool


@dataclass(frozen=True)
class WhatsAppSenderConfig:
    provider: str
    phone_number: Optional[str]
    account_sid: Optional[str]
    auth_token: Optional[str]
    phone_number_id: Optional[str]
    access_token: Optional[str]


def _tenant_config_usable(row: EmailProviderConfig) -> bool:
    if row.verification_status == "verified":
        return True
    return bool(row.dns_all_ok and row.from_email and row.from_name)


class SenderConfigCache:
    """Per-batch cache of sender configuration; build one per dispatcher run."""

    def __init__(self, db: Session) -> None:
        self._db = db
        self._email: Dict[str, Optional[EmailSenderConfig]] = {}
        self._whatsapp: Dict[str, Optional[WhatsAppSenderConfig]] = {}
        self._system_loaded = False
        self._system: Optional[EmailSenderConfig] = None

    def _system_email(self) -> Optional[EmailSenderConfig]:
        if self._system_loaded:
            return self._system
        self._system_loaded = True
        row = self._db.execute(select(SystemEmailConfig).limit(1)).scalars().first()
        if row is None:
            return None
        if row.verification_status != "verified":
            logger.info("System email config present but not verified: %s", row.verification_status)
            return None
        self._system = EmailSenderConfig(
            provider_type=row.provider_type or "sendgrid",
            from_name=row.from_name,
            from_email=row.from_email,
            reply_to=row.reply_to,
            sending_domain=row.sending_domain,
            verified=True,
            is_system_fallback=True,
        )
        return self._system

    def email_config(self, tenant_id: str) -> Optional[EmailSenderConfig]:
        """Tenant config when usable, else the verified system config, else None."""
        key = str(tenant_id)
        if key in self._email:
            return self._email[key]

        row = (
            self._db.execute(select(EmailProviderConfig).where(EmailProviderConfig.tenant_id == tenant_id))
            .scalars()
            .first()
        )
        config: Optional[EmailSenderConfig] = None
        if row is not None and _tenant_config_usable(row):
            config = EmailSenderConfig(
                provider_type=row.provider_type or "sendgrid",
                from_name=row.from_name or "",
                from_email=row.from_email or "",
                reply_to=row.reply_to,
                sending_domain=row.sending_domain,
                verified=row.verification_status == "verified" or bool(row.dns_all_ok),
                is_system_fallback=False,
            )
        else:
            config = self._system_email()
            if config is not None:
                logger.info("Tenant %s email falls back to system sender", key)

        self._email[key] = config
        return config

    def whatsapp_config(self, tenant_id: str) -> Optional[WhatsAppSenderConfig]:
        """Connected + enabled config; Meta is preferred when several exist."""
        key = str(tenant_id)
        if key in self._whatsapp:
            return self._whatsapp[key]

        rows = (
            self._db.execute(
                select(WhatsAppConfig).where(
                    WhatsAppConfig.tenant_id == tenant_id,
                    WhatsAppConfig.connection_status == "connected",
                    WhatsAppConfig.is_enabled.is_(True),
                )
            )
            .scalars()
            .all()
        )
        rows = sorted(rows, key=lambda row: 0 if row.provider == "meta" else 1)
        config = None
        if rows:
            row = rows[0]
            config = WhatsAppSenderConfig(
                provider=row.provider,
                phone_number=row.phone_number,
                account_sid=row.account_sid,
                auth_token=row.auth_token,
                phone_number_id=row.phone_number_id,
                access_token=row.access_token,
            )
        self._whatsapp[key] = config
        return config
