"""
Centralized configuration using Pydantic Settings.

All environment variables are loaded and validated here.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "ERP Construcción"
    app_url: str = "http://localhost:3000"
    default_locale: str = "es"
    session_ttl_hours: int = 24 * 7
    log_level: str = "INFO"
    log_json: bool = True

    # PostgreSQL
    db_host: str = "postgres"
    db_port: int = 5432
    db_name: str = "obra_erp"
    db_user: str = "obra_erp"
    db_password: str = ""

    # Object storage (MinIO / S3 compatible, optional)
    storage_endpoint: str | None = None
    storage_access_key: str | None = None
    storage_secret_key: str | None = None
    storage_bucket: str = "obra-documents"
    storage_secure: bool = True
    storage_url_expiry_minutes: int = 60

    # Email (Resend)
    resend_api_key: str = ""
    resend_from_email: str = "ERP Construcción <onboarding@resend.dev>"
    resend_api_url: str = "https://api.resend.com"

    # Upload limits
    max_upload_bytes: int = 50 * 1024 * 1024
    project_storage_limit_bytes: int = 500 * 1024 * 1024
    default_org_storage_gb: int = 1  # 0 = unlimited

    # Scheduler
    scheduler_enabled: bool = True
    outbox_cleanup_hour: int = 3  # UTC
    outbox_ttl_days: int = 7
    outbox_batch_size: int = 5000

    # Budget markup defaults (percent)
    default_overhead_pct: float = 15
    default_financial_pct: float = 5
    default_profit_pct: float = 20
    default_tax_pct: float = 21

    @property
    def database_url(self) -> str:
        """PostgreSQL connection URL."""
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @property
    def invitation_url(self) -> str:
        """Base URL for invitation acceptance links."""
        return f"{self.app_url.rstrip('/')}/invite"

    @property
    def reset_password_url(self) -> str:
        """Base URL for password reset links."""
        return f"{self.app_url.rstrip('/')}/reset-password"


# Global settings instance
settings = Settings()
