"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development (simulated
providers, short jitter ceiling).

Usage:
    from pushgateway.app.core.config import settings
    print(settings.APP_ID)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Gateway settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Push Gateway"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 7022

    # ── Dispatch ──
    APP_ID: str = "com.example.messenger"
    MAX_JITTER_DELAY: float = 2.0  # seconds, 0 disables jitter
    PUSH_MAX_RETRIES: int = 4
    RETRY_INITIAL_BACKOFF: float = 0.25  # seconds
    RETRY_MAX_BACKOFF: float = 30.0  # ceiling for the doubling backoff
    DISPATCH_CONCURRENTLY: bool = True  # False: devices one after another
    NOTIFICATION_REQUEST_BODY_LIMIT: int = 102_400  # bytes

    # ── Providers ──
    SENDER_MODE: str = "simulation"  # simulation | live

    FCM_SERVICE_ACCOUNT_PATH: Optional[str] = None
    FCM_ENDPOINT: str = "https://fcm.googleapis.com/v1"
    FCM_REQUEST_TIMEOUT: float = 10.0

    APNS_KEY_PATH: Optional[str] = None  # .p8 token key
    APNS_KEY_ID: Optional[str] = None
    APNS_TEAM_ID: Optional[str] = None
    APNS_TOPIC: Optional[str] = None  # bundle id
    APNS_SANDBOX: bool = False
    APNS_REQUEST_TIMEOUT: float = 10.0

    # ── Notification text ──
    NOTIFICATION_TITLE: str = "<count> unread messages"
    NOTIFICATION_BODY: str = "Open the app to read them"
    NOTIFICATION_SOUND: str = "default"
    NOTIFICATION_ICON: str = "notifications_icon"
    NOTIFICATION_TAG: str = "org.matrix.default_notification"
    NOTIFICATION_ANDROID_CHANNEL_ID: str = "org.matrix.app.message"
    NOTIFICATION_CLICK_ACTION: str = "FLUTTER_NOTIFICATION_CLICK"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def is_simulation(self) -> bool:
        return self.SENDER_MODE == "simulation"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
