"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    allowed_origins: str = ""  # Comma-separated CORS origins; empty means "*"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (alert cooldowns, worker heartbeat)
    redis_url: str = "redis://localhost:6379/0"

    # Inbound Vairify webhooks. Empty secret disables verification (logged).
    vairify_webhook_secret: str = ""
    signature_tolerance_seconds: int = 300

    # Outbound partner webhooks
    outbound_signing_secret: str = ""
    outbound_timeout_seconds: float = 30.0
    outbound_max_attempts: int = 5

    # Retry scheduler
    retry_batch_size: int = 50
    retry_lease_seconds: int = 120
    retry_worker_enabled: bool = False  # external cron drives passes by default
    retry_worker_interval_seconds: int = 60

    # Sentry
    sentry_dsn: str = ""

    # Alerting
    alert_webhook_url: str = ""  # Discord/Slack webhook URL for critical alerts

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
