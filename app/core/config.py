# app/core/config.py - Consolidated

import os
from functools import lru_cache
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings.
    Loads values from environment variables (.env file)
    """
    # Database settings
    DATABASE_URL: str = ""

    # OLX API
    OLX_BASE_URL: str = "https://api.olx.ba"
    OLX_DEVICE_NAME: str = "olx_backoffice"
    OLX_REQUEST_TIMEOUT: float = 30.0
    OLX_TOKEN_TTL_DAYS: int = 30                 # OLX tokens typically expire after 30 days
    OLX_TOKEN_REFRESH_MARGIN_MINUTES: int = 60   # Re-authenticate this long before expiry
    OLX_LISTINGS_PER_PAGE: int = 50

    # OLX retry budget (exponential backoff)
    OLX_RETRY_ATTEMPTS: int = 4
    OLX_RETRY_BASE_DELAY: float = 1.0
    OLX_RETRY_MULTIPLIER: float = 2.0
    OLX_RETRY_MAX_DELAY: float = 30.0

    # Imports
    DEFAULT_CURRENCY: str = "BAM"
    IMAGE_FETCH_TIMEOUT: float = 15.0
    IMAGE_UPLOAD_DIR: str = "storage/product_images"
    IMPORT_STALE_MINUTES: int = 60

    # Supplier scraper (external process emitting a JSON product array)
    SCRAPER_COMMAND: str = "node scrape.js"
    SCRAPER_DIR: str = "scraper"
    SCRAPER_DATA_DIR: str = "scraper/data"
    SCRAPER_TIMEOUT_PER_PRODUCT: int = 10
    SCRAPER_MIN_TIMEOUT: int = 60

    # Scheduler
    SCHEDULER_ENABLED: bool = False
    TAXONOMY_SYNC_CRON_HOUR: int = 3
    STALE_IMPORT_CHECK_MINUTES: int = 15

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Basic Auth for the API routers
    BASIC_AUTH_USERNAME: Optional[str] = None
    BASIC_AUTH_PASSWORD: Optional[str] = None

    model_config = ConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists('.env') else None,
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()


def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()
