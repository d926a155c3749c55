from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, DotEnvSettingsSource, EnvSettingsSource, SettingsConfigDict


# List settings that may also be given as a plain comma-separated string.
COMMA_LIST_FIELDS = frozenset({"allow_origins"})


class _CommaListMixin:
    def decode_complex_value(self, field_name, field, value):  # type: ignore[override]
        try:
            return super().decode_complex_value(field_name, field, value)  # type: ignore[misc]
        except json.JSONDecodeError:
            if field_name in COMMA_LIST_FIELDS:
                return value
            raise


class _EnvSource(_CommaListMixin, EnvSettingsSource):
    pass


class _DotEnvSource(_CommaListMixin, DotEnvSettingsSource):
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    project_name: str = "InvoiceDesk API"
    project_version: str = "1.0.0"
    environment: str = Field(
        default="development",
        description="Deployment environment name",
        validation_alias=AliasChoices("ENV", "ENVIRONMENT"),
    )
    log_level: str = Field(default="INFO", description="Logging level")
    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL for invoice links in emails",
        validation_alias=AliasChoices("APP_BASE_URL", "FRONTEND_BASE_URL"),
    )

    # Database
    database_url: str = Field(
        default="postgresql+psycopg2://postgres@localhost:5432/invoicedesk",
        description="SQLAlchemy database URL",
    )
    db_pool_size: int = Field(default=5, description="Base DB connection pool size")
    db_max_overflow: int = Field(default=10, description="Additional DB connections beyond pool size")
    db_pool_timeout: int = Field(default=30, description="Seconds to wait for a DB connection")
    db_pool_recycle: int = Field(default=1800, description="Recycle DB connections after N seconds")
    db_statement_timeout_ms: int = Field(default=15000, description="Per-statement timeout (Postgres only)")

    # Auth / JWT
    jwt_secret: str = Field(default="change_me", description="JWT signing secret")
    algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Access token expiry in minutes")

    # CORS
    allow_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    )

    # Storage
    uploads_dir: str = Field(
        default="./uploads",
        description="Directory for uploaded attachments",
        validation_alias=AliasChoices("UPLOAD_DIR", "UPLOADS_DIR"),
    )
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, description="Largest accepted attachment")

    # Rate limits (requests per window)
    rate_limit_default_max: int = Field(default=60, description="Fallback requests per window")
    rate_limit_default_window_seconds: int = Field(default=60, description="Fallback window length")
    rate_limit_login_max: int = Field(default=10, description="Login attempts allowed per window")
    rate_limit_login_window_seconds: int = Field(default=15 * 60, description="Login rate limit window")
    rate_limit_create_max: int = Field(default=30, description="Invoice creations per window")
    rate_limit_create_window_seconds: int = Field(default=60)
    rate_limit_send_max: int = Field(default=10, description="Invoice emails per window")
    rate_limit_send_window_seconds: int = Field(default=60 * 60)
    rate_limit_cancel_max: int = Field(default=30)
    rate_limit_cancel_window_seconds: int = Field(default=60)
    rate_limit_pay_max: int = Field(default=30)
    rate_limit_pay_window_seconds: int = Field(default=60)
    rate_limit_payment_max: int = Field(default=30, description="Ledger additions/deletions per window")
    rate_limit_payment_window_seconds: int = Field(default=60)
    rate_limit_upload_max: int = Field(default=20)
    rate_limit_upload_window_seconds: int = Field(default=60)
    rate_limit_update_max: int = Field(default=30, description="Invoice, customer and settings edits per window")
    rate_limit_update_window_seconds: int = Field(default=60)
    rate_limit_delete_max: int = Field(default=20)
    rate_limit_delete_window_seconds: int = Field(default=60)
    rate_limit_view_max: int = Field(default=120, description="Public invoice lookups per client IP")
    rate_limit_view_window_seconds: int = Field(default=60)

    # Email delivery
    email_provider: str = Field(
        default="disabled",
        description="Email provider: resend, postmark, smtp, disabled",
        validation_alias=AliasChoices("EMAIL_PROVIDER"),
    )
    email_api_key: str | None = Field(
        default=None,
        description="API key for Resend/Postmark",
        validation_alias=AliasChoices("EMAIL_API_KEY"),
    )
    email_from: str | None = Field(
        default=None,
        description="From address for outbound email",
        validation_alias=AliasChoices("EMAIL_FROM"),
    )
    email_timeout_seconds: float = Field(default=15.0, description="Timeout for outbound email calls")
    smtp_host: str | None = Field(default=None, description="SMTP host")
    smtp_port: int = Field(default=587, description="SMTP port")
    smtp_username: str | None = Field(default=None, description="SMTP username")
    smtp_password: str | None = Field(default=None, description="SMTP password")
    smtp_use_tls: bool = Field(default=True, description="Use TLS for SMTP")

    # Payment provider
    payment_provider_secret_key: str | None = Field(
        default=None,
        description="Secret key for the hosted checkout provider",
        validation_alias=AliasChoices("PAYMENT_PROVIDER_SECRET_KEY", "STRIPE_SECRET_KEY"),
    )
    payment_webhook_secret: str | None = Field(
        default=None,
        description="Signing secret for provider webhooks",
        validation_alias=AliasChoices("PAYMENT_WEBHOOK_SECRET", "STRIPE_WEBHOOK_SECRET"),
    )
    payment_webhook_tolerance_seconds: int = Field(default=300, description="Max webhook timestamp skew")

    @field_validator("allow_origins", mode="before")
    @classmethod
    def parse_allow_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if isinstance(value, str) and value.strip():
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

    def ensure_uploads_dir(self) -> Path:
        uploads_path = Path(self.uploads_dir).expanduser().resolve()
        uploads_path.mkdir(parents=True, exist_ok=True)
        return uploads_path

    @property
    def external_payments_enabled(self) -> bool:
        return bool(self.payment_provider_secret_key)

    def rate_limit_for(self, action: str) -> tuple[int, int]:
        """Return ``(max_requests, window_seconds)`` for a rate-limited action."""
        max_requests = getattr(self, f"rate_limit_{action}_max", None)
        window = getattr(self, f"rate_limit_{action}_window_seconds", None)
        if max_requests is None or window is None:
            return self.rate_limit_default_max, self.rate_limit_default_window_seconds
        return int(max_requests), int(window)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            _EnvSource(settings_cls),
            _DotEnvSource(settings_cls),
            file_secret_settings,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
