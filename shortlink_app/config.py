from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Loading priority (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values below
    """

    # Environment
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Application
    app_name: str = "Short Link Service"
    app_version: str = "1.0.0"
    secret_key: str = "your-secret-key-here-change-in-production"

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Database
    database_url: str = "sqlite:///./shortlink.db"
    storage_backend: str = "sqlalchemy"  # Options: "sqlalchemy", "memory"

    # Short code allocation
    base_url: str = "http://127.0.0.1:8000"
    short_code_length: int = 8
    max_retries: int = 5  # Allocation attempts before giving up
    custom_alias_min_length: int = 3
    custom_alias_max_length: int = 50

    # Cache settings (redirect hot path)
    cache_backend: str = "memory"  # Options: "redis", "memory", "null"
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl: int = 3600  # Cache TTL in seconds (1 hour)

    # Click queue settings
    queue_backend: str = "memory"  # Options: "memory", "redis_streams"
    queue_name: str = "link_clicks"
    queue_consumer_group: str = "click_workers"
    queue_max_size: int = 10000  # Bound for the in-memory queue
    queue_publish_timeout: float = 0.5  # Seconds to wait for room before recording directly
    queue_batch_size: int = 100
    queue_block_time_ms: int = 1000
    click_workers: int = 1

    # Analytics aggregation
    aggregation_interval: float = 1.0  # Upper bound on snapshot lag in seconds
    analytics_window_days: int = 30
    daily_series_display_days: int = 14
    recent_clicks_limit: int = 100

    # Redirect path
    redirect_timeout: float = 2.0  # Lookup latency budget in seconds
    trust_forwarded_for: bool = False  # Take the client IP from X-Forwarded-For (only behind a trusted proxy)

    # Geo-IP collaborator
    geoip_backend: str = "null"  # Options: "null", "http"
    geoip_url: str = "http://ip-api.com/json/{ip}?fields=status,countryCode"
    geoip_timeout: float = 2.0
    anonymize_ip: bool = False

    # QR code collaborator
    qr_code_template: str = "https://api.qrserver.com/v1/create-qr-code/?size=200x200&data={url}"

    # Bearer tokens
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7

    # Listing / bulk limits
    bulk_max_items: int = 100
    default_page_size: int = 50
    max_page_size: int = 100

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Create settings instance
settings = Settings()
