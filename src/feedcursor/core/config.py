"""Configuration management using Pydantic settings."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    """Log level options."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class MongoDBSettings(BaseSettings):
    """MongoDB connection settings."""

    model_config = SettingsConfigDict(env_prefix="MONGODB_")

    uri: SecretStr = Field(
        default=SecretStr("mongodb://localhost:27017"),
        description="MongoDB connection URI",
    )
    database: str = Field(
        default="feedcursor",
        description="Database holding partition metadata and checkpoints",
    )
    ranges_collection: str = Field(
        default="partition_ranges",
        description="Collection for partition key range metadata",
    )
    checkpoints_collection: str = Field(
        default="checkpoints",
        description="Collection for persisted change feed checkpoints",
    )
    max_pool_size: int = Field(default=100, ge=1)
    min_pool_size: int = Field(default=0, ge=0)
    server_selection_timeout_ms: int = Field(default=5000, ge=100)


class FeedSettings(BaseSettings):
    """Change feed traversal settings."""

    model_config = SettingsConfigDict(env_prefix="FEED_")

    database_id: str = Field(
        default="feeddb",
        description="Database of the collection whose feed is read",
    )
    collection_id: str = Field(
        default="readings",
        description="Collection whose feed is read",
    )
    partition_key_path: str = Field(
        default="/deviceId",
        description="Partition key path of the collection",
    )
    partition_count: int = Field(
        default=4,
        ge=1,
        description="Number of partition ranges created for a new collection",
    )
    range_page_size: int = Field(
        default=100,
        ge=1,
        description="Partition ranges returned per listing page",
    )
    batch_size: int = Field(
        default=100,
        ge=1,
        description="Changes returned per read when no cap is requested",
    )
    max_concurrency: int = Field(
        default=4,
        ge=1,
        description="Partitions drained concurrently",
    )
    consumer_name: str = Field(
        default="default",
        description="Name under which checkpoints are persisted",
    )

    @field_validator("partition_key_path")
    @classmethod
    def validate_partition_key_path(cls, v: str) -> str:
        """Require an absolute partition key path."""
        if not v.startswith("/") or len(v) < 2:
            raise ValueError("partition_key_path must look like '/field'")
        return v


class RetrySettings(BaseSettings):
    """Retry policy settings for whole read calls."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, gt=0)
    max_delay: float = Field(default=30.0, gt=0)


class ObservabilitySettings(BaseSettings):
    """Observability settings."""

    model_config = SettingsConfigDict(env_prefix="OBSERVABILITY_")

    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_format: Literal["json", "console"] = Field(default="console")
    metrics_enabled: bool = Field(default=True)
    service_name: str = Field(default="feedcursor")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="FEEDCURSOR_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    # Environment
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development"
    )
    debug: bool = Field(default=False)

    # Component settings
    mongodb: MongoDBSettings = Field(default_factory=MongoDBSettings)
    feed: FeedSettings = Field(default_factory=FeedSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @classmethod
    def load(cls) -> Settings:
        """Load settings from environment."""
        return cls()


# Global settings instance (lazy loaded)
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def configure_settings(settings: Settings | None) -> None:
    """Configure the global settings instance (for testing)."""
    global _settings
    _settings = settings
