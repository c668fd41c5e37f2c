"""Application configuration using pydantic-settings."""
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database (system of record)
    database_url: str
    db_pool_size: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")

    # Redis - backs the job queue
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")
    redis_pool_size: int = Field(default=20, validation_alias="REDIS_POOL_SIZE")

    # Meilisearch
    meili_host: str = Field(default="http://localhost:7700", validation_alias="MEILI_HOST")
    meili_master_key: str = Field(default="", validation_alias="MEILI_MASTER_KEY")
    meili_index: str = Field(default="bookmarks", validation_alias="MEILI_INDEX")
    meili_timeout_seconds: int = Field(default=10, validation_alias="MEILI_TIMEOUT_SECONDS")

    # Snapshots of fetched pages
    snapshot_dir: str = Field(default="snapshots", validation_alias="SNAPSHOT_DIR")

    # Content fetching limits
    fetch_timeout_seconds: float = Field(default=10.0, validation_alias="FETCH_TIMEOUT_SECONDS")
    fetch_max_bytes: int = Field(default=5 * 1024 * 1024, validation_alias="FETCH_MAX_BYTES")
    fetch_block_private_networks: bool = Field(
        default=True, validation_alias="FETCH_BLOCK_PRIVATE_NETWORKS",
    )

    # Job queue and retry policy
    queue_name: str = Field(default="bookmark-processing", validation_alias="QUEUE_NAME")
    queue_visibility_timeout_seconds: int = Field(
        default=120, validation_alias="QUEUE_VISIBILITY_TIMEOUT_SECONDS",
    )
    queue_max_attempts: int = Field(default=3, validation_alias="QUEUE_MAX_ATTEMPTS")
    queue_backoff_base_seconds: float = Field(
        default=5.0, validation_alias="QUEUE_BACKOFF_BASE_SECONDS",
    )
    queue_backoff_max_seconds: float = Field(
        default=300.0, validation_alias="QUEUE_BACKOFF_MAX_SECONDS",
    )

    # Worker
    worker_concurrency: int = Field(default=2, validation_alias="WORKER_CONCURRENCY")
    worker_poll_interval_seconds: float = Field(
        default=1.0, validation_alias="WORKER_POLL_INTERVAL_SECONDS",
    )
    # Keep a title the user already set instead of replacing it with the page title
    preserve_user_title: bool = Field(default=False, validation_alias="PRESERVE_USER_TITLE")

    # Recovery sweep for bookmarks that never finished processing
    requeue_grace_minutes: int = Field(default=30, validation_alias="REQUEUE_GRACE_MINUTES")

    # Search read path
    search_default_limit: int = Field(default=20, validation_alias="SEARCH_DEFAULT_LIMIT")
    search_max_limit: int = Field(default=100, validation_alias="SEARCH_MAX_LIMIT")

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Reject settings combinations the pipeline cannot honor."""
        if self.search_default_limit < 1 or self.search_max_limit < 1:
            raise ValueError("Search limits must be at least 1.")
        if self.search_default_limit > self.search_max_limit:
            raise ValueError(
                f"SEARCH_DEFAULT_LIMIT ({self.search_default_limit}) cannot exceed "
                f"SEARCH_MAX_LIMIT ({self.search_max_limit}).",
            )
        if self.queue_max_attempts < 1:
            raise ValueError("QUEUE_MAX_ATTEMPTS must be at least 1.")
        if self.fetch_max_bytes < 1 or self.fetch_timeout_seconds <= 0:
            raise ValueError("Fetch limits must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
