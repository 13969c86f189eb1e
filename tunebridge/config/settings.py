"""Configuration management using Pydantic Settings.

This module provides type-safe configuration management with automatic
environment variable loading and validation using Pydantic Settings v2.

The configuration is organized into logical groups:
- DatabaseConfig: Job store connection settings
- LoggingConfig: Logging levels, files, and debugging options
- CredentialsConfig: Application-level provider secrets
- APIConfig: Per-provider request limits, timeouts and retries
- MatchingConfig: Track reconciliation thresholds and weights
- SchedulerConfig: Worker pool, leases, retries and retention
"""

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseModel):
    """Database connection and pooling configuration."""

    url: str = "sqlite+aiosqlite:///data/tunebridge.db"
    echo: bool = False
    pool_size: int = 1
    max_overflow: int = 4
    pool_timeout: int = 60
    pool_recycle: int = 3600


class LoggingConfig(BaseModel):
    """Logging configuration for console and file output."""

    console_level: str = "INFO"
    file_level: str = "DEBUG"
    log_file: Path = Path("data/logs/tunebridge.log")
    real_time_debug: bool = True


class CredentialsConfig(BaseModel):
    """Application credentials shared by every user of a provider.

    Per-user access tokens never live here; they come from the credential store.
    """

    apple_music_developer_token: str = ""
    spotify_market: str = "US"


class APIConfig(BaseModel):
    """External API configuration and rate limiting."""

    request_timeout: float = 20.0

    # Spotify Web API
    spotify_retry_count: int = 3
    spotify_retry_max_delay: float = 30.0
    spotify_page_size: int = 100
    spotify_add_batch_size: int = 100

    # Apple Music API
    apple_music_base_url: str = "https://api.music.apple.com"
    apple_music_retry_count: int = 3
    apple_music_retry_max_delay: float = 30.0
    apple_music_catalog_chunk_size: int = 25
    apple_music_add_batch_size: int = 25
    apple_music_default_storefront: str = "us"

    # SoundCloud API
    soundcloud_base_url: str = "https://api.soundcloud.com"
    soundcloud_retry_count: int = 3
    soundcloud_retry_max_delay: float = 30.0
    soundcloud_page_size: int = 200
    soundcloud_add_batch_size: int = 200


class MatchingConfig(BaseModel):
    """Track reconciliation thresholds and scoring weights.

    Catalog scores (ISRC/UPC disambiguation) are points on a 0-100 scale,
    metadata scores are a weighted sum normalized to roughly 0-1.
    """

    # Catalog candidate disambiguation
    catalog_base_score: float = 50.0
    catalog_same_artist_bonus: float = 30.0
    catalog_album_bonus: float = 5.0
    catalog_compilation_penalty: float = 40.0
    catalog_various_artists_penalty: float = 25.0
    catalog_variant_penalty: float = 20.0
    catalog_earliest_release_bonus: float = 10.0
    catalog_min_score: float = 40.0
    catalog_candidate_limit: int = 10

    # Metadata fallback
    metadata_title_weight: float = 0.5
    metadata_artist_weight: float = 0.35
    metadata_duration_weight: float = 0.15
    metadata_variant_penalty: float = 0.3
    metadata_isrc_bonus: float = 0.25
    metadata_duration_mismatch_penalty: float = 0.2
    metadata_min_score: float = 0.65
    metadata_candidate_limit: int = 10
    duration_tolerance_ms: int = 3000
    duration_max_diff_ms: int = 10000

    # Reconciler behavior
    unreliable_isrc_providers: list[str] = Field(default_factory=lambda: ["soundcloud"])
    metadata_concurrency: int = 4
    use_upc_pass: bool = False
    upc_title_min_similarity: float = 0.8
    unmatched_sample_size: int = 200


class SchedulerConfig(BaseModel):
    """Job dispatch, lease and retention configuration."""

    concurrency: int = 3
    poll_interval: float = 1.0
    lease_seconds: int = 600
    lease_renew_interval: float = 60.0
    stale_threshold_seconds: int = 900
    cleanup_interval: float = 300.0
    retention_days: int = 30
    max_attempts: int = 3
    retry_base_delay: float = 30.0
    retry_max_delay: float = 600.0
    retry_client_errors: bool = False
    shutdown_timeout: float = 30.0


class Settings(BaseSettings):
    """Main application settings with environment variable support.

    Environment variables use the nested naming convention, for example
    DATABASE__URL, LOGGING__CONSOLE_LEVEL or SCHEDULER__CONCURRENCY.

    The .env file is automatically loaded for development convenience.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()
    credentials: CredentialsConfig = CredentialsConfig()
    api: APIConfig = APIConfig()
    matching: MatchingConfig = MatchingConfig()
    scheduler: SchedulerConfig = SchedulerConfig()

    data_dir: Path = Path("data")


# Singleton instance for application use
settings = Settings()
