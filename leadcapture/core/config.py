from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        validate_assignment=True,
    )

    app_env: str = "dev"
    database_url: str

    # WhatsApp Cloud API (per-tenant credentials live on the tenants table)
    whatsapp_api_base_url: str = "https://graph.facebook.com/v18.0"
    whatsapp_dry_run: bool = True  # Set to False in production to enable real sending

    # Lead-info extraction
    ai_provider: str = "openai"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 15.0

    # Reminder timing (hours)
    reminder_1_delay_hours: float = 2  # After first contact
    reminder_2_delay_hours: float = 24  # After first contact, not after reminder 1
    unresponsive_timeout_hours: float = 24  # After reminder 2 is sent

    # Job worker
    job_worker_concurrency: int = 5
    job_worker_batch_size: int = 50
    job_worker_poll_seconds: float = 5.0
    job_max_attempts: int = 5
    job_stale_after_minutes: int = 15  # RUNNING longer than this is redelivered

    # Feature flags
    feature_reminders_enabled: bool = True
    feature_notifications_enabled: bool = True  # Owner WhatsApp summaries
    feature_cancel_reminders_on_reply: bool = True

    # Copy
    copy_locale: str = "en_GB"
    default_business_name: str = "the business"

    admin_api_key: str | None = (
        None  # Optional - if not set, admin endpoints are unprotected (dev mode)
    )


# Settings will load from environment variables or .env file
# Required fields will raise ValidationError if missing (fail-fast)
settings = Settings()
