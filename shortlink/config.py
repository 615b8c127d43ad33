"""Configuration management for the short-link service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortlink.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    db_url = settings.DATABASE_URL

**Step 3 — Access values**::
    print(f"Slug length: {settings.SLUG_LENGTH}")
    print(f"GeoIP database: {settings.GEOIP_DATABASE_PATH}")

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Link expiry and click limits are only enforced when ENFORCE_LINK_LIMITS is on.
- NOT_FOUND_* and DEFAULT_QR_STYLE are defaults; the stored site settings row wins.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shortlink"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://shortlink:shortlink@db:5432/shortlink"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Slug generation
    SLUG_LENGTH: int = 6

    # Offline geolocation (MaxMind GeoLite2/GeoIP2 City)
    GEOIP_DATABASE_PATH: str = "data/GeoLite2-City.mmdb"
    GEOIP_PROBE_IP: str = "8.8.8.8"

    # Analytics
    DEFAULT_TIMEZONE: str = "UTC"
    ANALYTICS_MAX_DAYS: int = 365

    # Redirect path
    NOT_FOUND_PATH: str = "/404"
    NOT_FOUND_TITLE: str = "Link not found"
    NOT_FOUND_DESCRIPTION: str = "The short link you followed does not exist or is no longer available."
    NOT_FOUND_BUTTON_TEXT: str = "Back to home"
    NOT_FOUND_BUTTON_URL: str = "/"
    ENFORCE_LINK_LIMITS: bool = False

    # Admin API
    ADMIN_TOKEN: str = "changeme"

    # Site settings defaults, used until an admin stores the settings row
    DEFAULT_QR_STYLE: str = "square"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
