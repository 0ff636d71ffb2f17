"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Database
    database_url: str = "postgresql+asyncpg://storefront:storefront_dev_password@db:5432/storefront"

    # Internal endpoints (ops tooling)
    internal_api_key: str = "dev-internal-key-change-in-production"

    # Payment webhooks
    webhook_secret: str = "dev-webhook-secret-change-in-production"

    # Identity
    admin_emails: str = ""
    cart_token_max_age_days: int = 30
    session_cookie_max_age_days: int = 30
    verification_code_ttl_minutes: int = 10
    cookie_secure: bool = False

    # Session policy
    session_revoke_cooldown_hours: int = 24
    session_touch_interval_seconds: int = 300

    # Orders
    confirm_fallback_window_minutes: int = 60
    order_number_prefix: str = "STG"

    # Notifications and analytics
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    mailer_url: str = ""
    events_service_url: str = ""
    events_service_api_key: str = ""

    # Geo lookup
    geoip_api_url: str = "https://ipapi.co"
    geoip_api_key: str = ""

    external_call_timeout_seconds: float = 1.5

    # Outbox relay
    outbox_drain_inline: bool = True
    outbox_batch_size: int = 50
    outbox_max_attempts: int = 5
    outbox_poll_interval_seconds: float = 2.0

    # Logging
    log_level: str = "INFO"

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def admin_email_set(self) -> set[str]:
        """Normalised admin allow-list."""
        return {
            email.strip().lower()
            for email in self.admin_emails.split(",")
            if email.strip()
        }


settings = Settings()
