from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        validate_by_name=True,
        populate_by_name=True,
    )
    database_url: str = ""

    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False

    # Batch endpoints are called by an external scheduler with this shared secret.
    scheduler_token: str = Field(
        default="",
        validation_alias=AliasChoices("SCHEDULER_TOKEN", "NOTIFICATIONS_CRON_SECRET"),
    )
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = "authenticated"

    sendgrid_api_key: str = ""
    sendgrid_api_url: str = "https://api.sendgrid.com/v3/mail/send"
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True

    meta_graph_api_version: str = Field(
        default="v21.0",
        validation_alias=AliasChoices("META_GRAPH_API_VERSION"),
    )
    whatsapp_default_country_code: str = "55"

    notification_max_attempts: int = 3
    notification_recovery_window_seconds: int = 300
    notification_send_timeout_seconds: float = 15.0
    notification_default_channel: str = "email"
    notification_known_channels: list[str] = Field(default_factory=lambda: ["email", "whatsapp"])
    default_store_name: str = "Loja"

    enable_recurring_jobs: bool = False
    enable_notification_pipeline: bool = Field(
        default=True,
        validation_alias=AliasChoices("ENABLE_NOTIFICATION_PIPELINE", "ENABLE_NOTIFICATION_OUTBOX"),
    )
    notification_worker_interval_seconds: int = 30
    notification_worker_batch_size: int = 25
    event_worker_batch_size: int = 50

    pii_redaction_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("PII_REDACTION_ENABLED"),
    )

    cors_allow_origins: list[str] = Field(default_factory=list)

    @field_validator("cors_allow_origins", "notification_known_channels", mode="before")
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            if value.strip() == "":
                return []
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def is_sqlite(self) -> bool:
        return (self.database_url or "").startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    return Settings()
