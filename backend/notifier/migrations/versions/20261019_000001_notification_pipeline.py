"""notification pipeline (events inbox, rules, ledger, notifications, attempts, logs, sender configs)

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _ts(name: str, *, nullable: bool = False, default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.text("now()") if default else None,
    )


def upgrade() -> None:
    json_type = sa.JSON().with_variant(postgresql.JSONB, "postgresql")
    uuid_type = postgresql.UUID(as_uuid=True)

    op.create_table(
        "events_inbox",
        _id_column(),
        sa.Column("tenant_id", uuid_type, nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False, server_default=sa.text("'internal'")),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=True),
        sa.Column("payload_normalized", json_type, nullable=True),
        sa.Column("payload_raw", json_type, nullable=True),
        _ts("occurred_at", nullable=True, default=False),
        _ts("received_at"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'new'")),
        _ts("processed_at", nullable=True, default=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.UniqueConstraint("tenant_id", "idempotency_key", name="uniq_events_inbox_idempotency"),
        sa.CheckConstraint(
            "status IN ('new','pending','processing','processed','ignored')",
            name="chk_events_inbox_status",
        ),
    )
    op.create_index(
        "idx_events_inbox_tenant_status",
        "events_inbox",
        ["tenant_id", "status", "received_at"],
        unique=False,
    )

    op.create_table(
        "notification_rules",
        _id_column(),
        sa.Column("tenant_id", uuid_type, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False, server_default=sa.text("''")),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("rule_type", sa.String(length=32), nullable=True),
        sa.Column("trigger_condition", sa.String(length=64), nullable=True),
        sa.Column("trigger_event_type", sa.String(length=64), nullable=True),
        sa.Column("filters", json_type, nullable=True),
        sa.Column("actions", json_type, nullable=True),
        sa.Column("channels", json_type, nullable=False, server_default=sa.text("'[]'")),
        sa.Column("email_subject", sa.Text(), nullable=True),
        sa.Column("email_body", sa.Text(), nullable=True),
        sa.Column("whatsapp_message", sa.Text(), nullable=True),
        sa.Column("attachments", json_type, nullable=True),
        sa.Column("delay_amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("delay_unit", sa.String(length=16), nullable=False, server_default=sa.text("'minutes'")),
        sa.Column("product_scope", sa.String(length=16), nullable=False, server_default=sa.text("'all'")),
        sa.Column("product_ids", json_type, nullable=True),
        sa.Column("dedupe_scope", sa.String(length=32), nullable=True),
        _ts("effective_from", nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint(
            "rule_type IS NULL OR rule_type IN ('payment','shipping','abandoned_checkout','post_sale')",
            name="chk_notification_rules_type",
        ),
    )
    op.create_index(
        "idx_notification_rules_tenant_enabled",
        "notification_rules",
        ["tenant_id", "is_enabled", "priority"],
        unique=False,
    )

    op.create_table(
        "notification_dedup_ledger",
        _id_column(),
        sa.Column("tenant_id", uuid_type, nullable=False),
        sa.Column(
            "rule_id",
            uuid_type,
            sa.ForeignKey("notification_rules.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=False),
        sa.Column("scope_key", sa.String(length=128), nullable=False, server_default=sa.text("''")),
        _ts("created_at"),
        sa.UniqueConstraint("tenant_id", "rule_id", "entity_id", name="uniq_dedup_ledger_tenant_rule_entity"),
    )

    op.create_table(
        "notifications",
        _id_column(),
        sa.Column("tenant_id", uuid_type, nullable=False),
        sa.Column("event_id", uuid_type, sa.ForeignKey("events_inbox.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "rule_id",
            uuid_type,
            sa.ForeignKey("notification_rules.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("recipient", sa.String(length=255), nullable=False),
        sa.Column("template_key", sa.String(length=64), nullable=True),
        sa.Column("rendered_payload", json_type, nullable=False),
        sa.Column("dedupe_key", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'scheduled'")),
        _ts("scheduled_for"),
        _ts("next_attempt_at"),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default=sa.text("3")),
        _ts("last_attempt_at", nullable=True, default=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        _ts("sent_at", nullable=True, default=False),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("dedupe_key", name="uniq_notifications_dedupe_key"),
        sa.CheckConstraint(
            "status IN ('scheduled','sending','retrying','sent','failed')",
            name="chk_notifications_status",
        ),
    )
    op.create_index(
        "idx_notifications_status_next",
        "notifications",
        ["status", "next_attempt_at"],
        unique=False,
    )
    op.create_index(
        "idx_notifications_tenant_status",
        "notifications",
        ["tenant_id", "status"],
        unique=False,
    )

    op.create_table(
        "notification_attempts",
        _id_column(),
        sa.Column("tenant_id", uuid_type, nullable=False),
        sa.Column(
            "notification_id",
            uuid_type,
            sa.ForeignKey("notifications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("attempt_no", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'pending'")),
        _ts("started_at", default=False),
        _ts("finished_at", nullable=True, default=False),
        sa.Column("error_code", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("provider_response", json_type, nullable=True),
        sa.CheckConstraint("status IN ('pending','success','error')", name="chk_notification_attempts_status"),
    )
    op.create_index(
        "idx_notification_attempts_notification",
        "notification_attempts",
        ["notification_id", "attempt_no"],
        unique=False,
    )

    op.create_table(
        "notification_logs",
        _id_column(),
        sa.Column("tenant_id", uuid_type, nullable=False),
        sa.Column(
            "notification_id",
            uuid_type,
            sa.ForeignKey("notifications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("rule_id", uuid_type, nullable=True),
        sa.Column("rule_type", sa.String(length=32), nullable=True),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("order_id", sa.String(length=128), nullable=True),
        sa.Column("customer_id", sa.String(length=128), nullable=True),
        sa.Column("checkout_session_id", sa.String(length=128), nullable=True),
        sa.Column("recipient", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        _ts("scheduled_for", nullable=True, default=False),
        _ts("sent_at", nullable=True, default=False),
        sa.Column("content_preview", sa.Text(), nullable=True),
        sa.Column("attachments", json_type, nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("error_message", sa.Text(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("notification_id", name="uniq_notification_logs_notification"),
    )
    op.create_index(
        "idx_notification_logs_tenant_status",
        "notification_logs",
        ["tenant_id", "status"],
        unique=False,
    )

    op.create_table(
        "email_provider_configs",
        _id_column(),
        sa.Column("tenant_id", uuid_type, nullable=False),
        sa.Column("provider_type", sa.String(length=32), nullable=False, server_default=sa.text("'sendgrid'")),
        sa.Column("from_name", sa.String(length=128), nullable=True),
        sa.Column("from_email", sa.String(length=255), nullable=True),
        sa.Column("reply_to", sa.String(length=255), nullable=True),
        sa.Column("sending_domain", sa.String(length=255), nullable=True),
        sa.Column(
            "verification_status", sa.String(length=32), nullable=False, server_default=sa.text("'pending'")
        ),
        sa.Column("dns_all_ok", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _ts("updated_at"),
        sa.UniqueConstraint("tenant_id", name="uniq_email_provider_configs_tenant"),
    )

    op.create_table(
        "system_email_config",
        _id_column(),
        sa.Column("provider_type", sa.String(length=32), nullable=False, server_default=sa.text("'sendgrid'")),
        sa.Column("from_name", sa.String(length=128), nullable=False),
        sa.Column("from_email", sa.String(length=255), nullable=False),
        sa.Column("reply_to", sa.String(length=255), nullable=True),
        sa.Column("sending_domain", sa.String(length=255), nullable=True),
        sa.Column(
            "verification_status", sa.String(length=32), nullable=False, server_default=sa.text("'pending'")
        ),
    )

    op.create_table(
        "whatsapp_configs",
        _id_column(),
        sa.Column("tenant_id", uuid_type, nullable=False),
        sa.Column("provider", sa.String(length=16), nullable=False, server_default=sa.text("'twilio'")),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "connection_status", sa.String(length=32), nullable=False, server_default=sa.text("'disconnected'")
        ),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("account_sid", sa.String(length=64), nullable=True),
        sa.Column("auth_token", sa.String(length=128), nullable=True),
        sa.Column("phone_number_id", sa.String(length=64), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=True),
    )
    op.create_index(
        "idx_whatsapp_configs_tenant",
        "whatsapp_configs",
        ["tenant_id", "connection_status"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_whatsapp_configs_tenant", table_name="whatsapp_configs")
    op.drop_table("whatsapp_configs")
    op.drop_table("system_email_config")
    op.drop_table("email_provider_configs")
    op.drop_index("idx_notification_logs_tenant_status", table_name="notification_logs")
    op.drop_table("notification_logs")
    op.drop_index("idx_notification_attempts_notification", table_name="notification_attempts")
    op.drop_table("notification_attempts")
    op.drop_index("idx_notifications_tenant_status", table_name="notifications")
    op.drop_index("idx_notifications_status_next", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("notification_dedup_ledger")
    op.drop_index("idx_notification_rules_tenant_enabled", table_name="notification_rules")
    op.drop_table("notification_rules")
    op.drop_index("idx_events_inbox_tenant_status", table_name="events_inbox")
    op.drop_table("events_inbox")
