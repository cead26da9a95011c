"""
Configuration management for exchange liquidity watch.

Uses pydantic-settings for type-safe environment variable loading.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Storage
    database_url: str = "sqlite+aiosqlite:///monitor.db"

    # Monitor declarations (JSON file)
    monitors_config_path: str = "config.json"

    # Lark / Feishu webhook
    lark_webhook_url: Optional[str] = None
    notifier_max_retries: int = 3
    notifier_backoff_seconds: float = 1.0
    notifier_timeout_seconds: float = 10.0

    # CCXT Configuration
    use_websocket: bool = True
    enable_rate_limit: bool = True

    # Lifecycle
    shutdown_timeout_ms: int = 5000
    log_level: str = "INFO"

    # Observability (Logfire)
    logfire_token: Optional[str] = None
    logfire_service_name: str = "exchange-liquidity-watch"
    logfire_environment: str = "development"
    logfire_console_level: str = "info"  # 'info', 'warn', 'error'

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
