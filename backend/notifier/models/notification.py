import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.types import CHAR, TypeDecorator

Base = declarative_base()


class GUID(TypeDecorator):
    """UUID on PostgreSQL, CHAR(36) elsewhere."""

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            try:
                value = uuid.UUID(value)
            except ValueError:
                return value
        if isinstance(value, uuid.UUID):
            return value if dialect.name == "postgresql" else str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(value)
        except ValueError:
            return value


UUID_TYPE = GUID()
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")


def _uuid_pk():
    return Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )


class EventInbox(Base):
    __tablename__ = "events_inbox"
    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uniq_events_inbox_idempotency"),
        Index("idx_events_inbox_tenant_status", "tenant_id", "status", "received_at"),
        CheckConstraint(
            "status IN ('new','pending','processing','processed','ignored')",
            name="chk_events_inbox_status",
        ),
    )

    id = _uuid_pk()
    tenant_id = Column(UUID_TYPE, nullable=False)
    provider = Column(String(32), nullable=False, default="internal", server_default=text("'internal'"))
    event_type = Column(String(64), nullable=False)
    idempotency_key = Column(String(255))
    payload_normalized = Column(JSON_TYPE)
    payload_raw = Column(JSON_TYPE)
    occurred_at = Column(DateTime(timezone=True))
    received_at = Column(DateTime(timezone=True), server_default=func.now(), default=func.now(), nullable=False)
    status = Column(String(16), nullable=False, default="new", server_default=text("'new'"))
    processed_at = Column(DateTime(timezone=True))
    error_message = Column(Text)

    @property
    def payload(self) -> dict:
        data = self.payload_normalized or self.payload_raw
        return data if isinstance(data, dict) else {}


class NotificationRule(Base):
    __tablename__ = "notification_rules"
    __table_args__ = (
        Index("idx_notification_rules_tenant_enabled", "tenant_id", "is_enabled", "priority"),
        CheckConstraint(
            "rule_type IS NULL OR rule_type IN ('payment','shipping','abandoned_checkout','post_sale')",
            name="chk_notification_rules_type",
        ),
    )

    id = _uuid_pk()
    tenant_id = Column(UUID_TYPE, nullable=False)
    name = Column(String(128), nullable=False, default="", server_default=text("''"))
    is_enabled = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    priority = Column(Integer, nullable=False, default=0, server_default=text("0"))

    # NULL rule_type means a legacy declarative rule (trigger_event_type + filters + actions).
    rule_type = Column(String(32))
    trigger_condition = Column(String(64))
    trigger_event_type = Column(String(64))
    filters = Column(JSON_TYPE)
    actions = Column(JSON_TYPE)

    channels = Column(JSON_TYPE, nullable=False, default=list, server_default=text("'[]'"))
    email_subject = Column(Text)
    email_body = Column(Text)
    whatsapp_message = Column(Text)
    attachments = Column(JSON_TYPE)

    delay_amount = Column(Integer, nullable=False, default=0, server_default=text("0"))
    delay_unit = Column(String(16), nullable=False, default="minutes", server_default=text("'minutes'"))
    product_scope = Column(String(16), nullable=False, default="all", server_default=text("'all'"))
    product_ids = Column(JSON_TYPE)
    dedupe_scope = Column(String(32))

    effective_from = Column(DateTime(timezone=True), server_default=func.now(), default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class NotificationDedupLedger(Base):
    __tablename__ = "notification_dedup_ledger"
    __table_args__ = (
        UniqueConstraint("tenant_id", "rule_id", "entity_id", name="uniq_dedup_ledger_tenant_rule_entity"),
    )

    id = _uuid_pk()
    tenant_id = Column(UUID_TYPE, nullable=False)
    rule_id = Column(UUID_TYPE, ForeignKey("notification_rules.id", ondelete="CASCADE"), nullable=False)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(128), nullable=False)
    scope_key = Column(String(128), nullable=False, default="", server_default=text("''"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uniq_notifications_dedupe_key"),
        Index("idx_notifications_status_next", "status", "next_attempt_at"),
        Index("idx_notifications_tenant_status", "tenant_id", "status"),
        CheckConstraint(
            "status IN ('scheduled','sending','retrying','sent','failed')",
            name="chk_notifications_status",
        ),
    )

    id = _uuid_pk()
    tenant_id = Column(UUID_TYPE, nullable=False)
    event_id = Column(UUID_TYPE, ForeignKey("events_inbox.id", ondelete="SET NULL"))
    rule_id = Column(UUID_TYPE, ForeignKey("notification_rules.id", ondelete="SET NULL"))

    channel = Column(String(32), nullable=False)  # email / whatsapp
    recipient = Column(String(255), nullable=False)
    template_key = Column(String(64))
    rendered_payload = Column(JSON_TYPE, nullable=False)
    dedupe_key = Column(String(64), nullable=False)

    status = Column(String(16), nullable=False, default="scheduled", server_default=text("'scheduled'"))
    scheduled_for = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    next_attempt_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    attempt_count = Column(Integer, nullable=False, default=0, server_default=text("0"))
    max_attempts = Column(Integer, nullable=False, default=3, server_default=text("3"))
    last_attempt_at = Column(DateTime(timezone=True))
    last_error = Column(Text)
    sent_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class NotificationAttempt(Base):
    __tablename__ = "notification_attempts"
    __table_args__ = (
        Index("idx_notification_attempts_notification", "notification_id", "attempt_no"),
        CheckConstraint("status IN ('pending','success','error')", name="chk_notification_attempts_status"),
    )

    id = _uuid_pk()
    tenant_id = Column(UUID_TYPE, nullable=False)
    notification_id = Column(UUID_TYPE, ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False)
    attempt_no = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default="pending", server_default=text("'pending'"))
    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True))
    error_code = Column(String(64))
    error_message = Column(Text)
    provider_response = Column(JSON_TYPE)


class NotificationLog(Base):
    __tablename__ = "notification_logs"
    __table_args__ = (
        UniqueConstraint("notification_id", name="uniq_notification_logs_notification"),
        Index("idx_notification_logs_tenant_status", "tenant_id", "status"),
    )

    id = _uuid_pk()
    tenant_id = Column(UUID_TYPE, nullable=False)
    notification_id = Column(UUID_TYPE, ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False)
    rule_id = Column(UUID_TYPE)
    rule_type = Column(String(32))
    channel = Column(String(32), nullable=False)
    order_id = Column(String(128))
    customer_id = Column(String(128))
    checkout_session_id = Column(String(128))
    recipient = Column(String(255))
    status = Column(String(16), nullable=False)
    scheduled_for = Column(DateTime(timezone=True))
    sent_at = Column(DateTime(timezone=True))
    content_preview = Column(Text)
    attachments = Column(JSON_TYPE)
    attempt_count = Column(Integer, nullable=False, default=0, server_default=text("0"))
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class EmailProviderConfig(Base):
    __tablename__ = "email_provider_configs"
    __table_args__ = (UniqueConstraint("tenant_id", name="uniq_email_provider_configs_tenant"),)

    id = _uuid_pk()
    tenant_id = Column(UUID_TYPE, nullable=False)
    provider_type = Column(String(32), nullable=False, default="sendgrid", server_default=text("'sendgrid'"))
    from_name = Column(String(128))
    from_email = Column(String(255))
    reply_to = Column(String(255))
    sending_domain = Column(String(255))
    verification_status = Column(String(32), nullable=False, default="pending", server_default=text("'pending'"))
    dns_all_ok = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class SystemEmailConfig(Base):
    __tablename__ = "system_email_config"

    id = _uuid_pk()
    provider_type = Column(String(32), nullable=False, default="sendgrid", server_default=text("'sendgrid'"))
    from_name = Column(String(128), nullable=False)
    from_email = Column(String(255), nullable=False)
    reply_to = Column(String(255))
    sending_domain = Column(String(255))
    verification_status = Column(String(32), nullable=False, default="pending", server_default=text("'pending'"))


class WhatsAppConfig(Base):
    __tablename__ = "whatsapp_configs"
    __table_args__ = (Index("idx_whatsapp_configs_tenant", "tenant_id", "connection_status"),)

    id = _uuid_pk()
    tenant_id = Column(UUID_TYPE, nullable=False)
    provider = Column(String(16), nullable=False, default="twilio", server_default=text("'twilio'"))
    is_enabled = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    connection_status = Column(String(32), nullable=False, default="disconnected", server_default=text("'disconnected'"))
    phone_number = Column(String(32))
    # Twilio
    account_sid = Column(String(64))
    auth_token = Column(String(128))
    # Meta Cloud API
    phone_number_id = Column(String(64))
    access_token = Column(Text)


class Order(Base):
    """Read-only projection of storefront orders; written by the order service."""

    __tablename__ = "orders"
    __table_args__ = (Index("idx_orders_tenant_email", "tenant_id", "customer_email"),)

    id = _uuid_pk()
    tenant_id = Column(UUID_TYPE, nullable=False)
    order_number = Column(String(32))
    customer_email = Column(String(255))
    payment_status = Column(String(32), nullable=False, default="pending", server_default=text("'pending'"))
    total = Column(Numeric(12, 2))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
