"""
Application Settings
===================

Main application settings and environment configuration using Pydantic Settings.
Covers upstream endpoints, concurrency, retry, cache, batching and assembly knobs.
"""

from typing import List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    # Application Configuration
    app_name: str = Field(default="ZPL Render Engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(
        default="development", description="Environment: development, testing, production"
    )
    debug: bool = Field(default=False, description="Debug mode")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # Upstream Configuration
    base_urls: str = Field(
        default="https://api.labelary.com",
        description="Comma-separated upstream endpoints, in rotation order",
    )
    max_concurrency: int = Field(default=4, description="Max concurrent upstream calls")
    max_attempts: int = Field(default=6, description="Attempts per upstream dispatch")
    fetch_timeout_ms: int = Field(default=25000, description="Per-call timeout in milliseconds")

    # Cache Configuration
    cache_max_entries: int = Field(default=256, description="Rendered artifact cache capacity")

    # Batching Configuration
    batch_size: int = Field(default=2, description="Unique labels dispatched per batch")
    batch_delay_ms: int = Field(default=150, description="Delay between batches")
    instance_pool_cap: int = Field(default=4, description="Max logical instances per document")
    labels_per_instance: int = Field(default=12, description="Labels served by one instance")
    rate_limit_retry_delay_ms: int = Field(
        default=1000, description="Extra delay per instance id before a rate-limit retry"
    )

    # Assembly Configuration
    assembly_strategy: str = Field(
        default="auto", description="Assembly strategy: auto, pdf_merge, png_embed"
    )
    png_strategy_threshold: int = Field(
        default=35, description="Label count above which PNG embedding is used"
    )
    merge_batch_size: int = Field(default=15, description="Documents loaded per merge batch")
    fallback_batch_delay_ms: int = Field(
        default=1000, description="Inter-batch delay used by the rate-limit fallback"
    )
    preview_chunk_size: int = Field(default=16, description="Labels per preview chunk")

    # Monitoring Configuration
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed = {"development", "testing", "production"}
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("assembly_strategy")
    @classmethod
    def validate_assembly_strategy(cls, v: str) -> str:
        """Validate the forced assembly strategy override."""
        allowed = {"auto", "pdf_merge", "png_embed"}
        value = v.strip().lower()
        if value not in allowed:
            raise ValueError(f"Assembly strategy must be one of: {allowed}")
        return value

    @field_validator("base_urls")
    @classmethod
    def validate_base_urls(cls, v: str) -> str:
        """Require at least one upstream endpoint."""
        if not [u for u in v.split(",") if u.strip()]:
            raise ValueError("At least one upstream base URL is required")
        return v

    @field_validator(
        "max_concurrency",
        "max_attempts",
        "batch_size",
        "instance_pool_cap",
        "labels_per_instance",
        "png_strategy_threshold",
        "merge_batch_size",
        "preview_chunk_size",
    )
    @classmethod
    def clamp_at_least_one(cls, v: int) -> int:
        return max(1, v)

    @field_validator("batch_delay_ms", "rate_limit_retry_delay_ms", "fallback_batch_delay_ms")
    @classmethod
    def clamp_non_negative(cls, v: int) -> int:
        return max(0, v)

    @field_validator("fetch_timeout_ms")
    @classmethod
    def clamp_timeout(cls, v: int) -> int:
        return max(1000, v)

    @field_validator("cache_max_entries")
    @classmethod
    def clamp_cache_entries(cls, v: int) -> int:
        return max(16, v)

    @property
    def endpoints(self) -> List[str]:
        """Upstream base URLs in rotation order, without trailing slashes."""
        return [u.strip().rstrip("/") for u in self.base_urls.split(",") if u.strip()]

    @property
    def fetch_timeout(self) -> float:
        """Per-call timeout in seconds."""
        return self.fetch_timeout_ms / 1000.0

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, env_prefix="LABELARY_"
    )


# Global settings instance - will be initialized when needed
settings = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global settings
    if settings is None:
        settings = Settings()
    return settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global settings
    settings = Settings()
    return settings
