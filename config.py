"""
Configuration Management for ProtocolForge
==========================================

This module handles all application configuration using the Settings pattern
with Pydantic. This approach provides:

1. **Environment Variable Support**: Easy deployment configuration
2. **Validation**: Catches configuration errors at startup
3. **Type Safety**: IDE support and runtime validation
4. **Defaults**: Sensible defaults for development

Design Pattern: Singleton-like Settings
We use a cached function to ensure we only load settings once,
but still allow for easy testing with different configurations.
"""

import logging
from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables are prefixed with PROTOCOLFORGE_ to avoid conflicts.
    Example: PROTOCOLFORGE_OLLAMA_MODEL=llama3.2

    Priority order (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values defined here
    """

    # =================================================================
    # Ollama Configuration
    # =================================================================
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server URL. Default is local installation."
    )

    ollama_model: str = Field(
        default="llama3.2",
        description="""
        Ollama model used for protocol generation and safety analysis.

        An empty value means the model client is unconfigured: every
        generation or analysis call fails with ServiceUnavailableError.
        """
    )

    generation_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="""
        Temperature for protocol generation (0.0 - 2.0)

        Protocols benefit from some variety in meal selection, so this
        is higher than the analysis temperature.
        """
    )

    analysis_temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="Temperature for safety analysis and request parsing"
    )

    ollama_timeout: int = Field(
        default=120,
        description="Timeout in seconds for Ollama requests"
    )

    ollama_context_window: int = Field(
        default=8192,
        description="Context window size for Ollama model (tokens)"
    )

    # =================================================================
    # Generation Cache
    # =================================================================
    cache_backend: str = Field(
        default="memory",
        description="Generation cache backend: 'memory' or 'redis'"
    )

    generation_cache_ttl_seconds: int = Field(
        default=3600,
        gt=0,
        description="How long a generated protocol stays reusable (seconds)"
    )

    cache_cleanup_threshold: int = Field(
        default=1000,
        gt=0,
        description="""
        Entry count above which a write triggers a sweep of expired entries.

        Only used by the in-memory backend; Redis expires keys itself.
        """
    )

    single_flight: bool = Field(
        default=True,
        description="""
        Serialize concurrent generations of the same cache key.

        When disabled, two concurrent requests for the same uncached key
        both call the model ("cache stampede").
        """
    )

    # =================================================================
    # Redis Configuration
    # =================================================================
    redis_host: str = Field(default="localhost", description="Redis host")
    redis_port: int = Field(default=6379, description="Redis port")
    redis_db: int = Field(default=0, description="Redis database index")
    redis_password: Optional[str] = Field(default=None, description="Redis password")
    redis_namespace: str = Field(
        default="protocolforge",
        description="Prefix for every key written by the generation cache"
    )

    # =================================================================
    # Batch Generation
    # =================================================================
    batch_size: int = Field(
        default=3,
        ge=1,
        description="Number of generations run concurrently per batch group"
    )

    batch_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Pause between batch groups to respect model rate limits"
    )

    # =================================================================
    # Safety Validation
    # =================================================================
    safety_validity_months: int = Field(
        default=3,
        ge=1,
        description="""
        How long a safety verdict stays valid.

        Medications change, so verdicts are recomputed after this period.
        """
    )

    safety_history_limit: int = Field(
        default=10,
        ge=1,
        description="Number of verdicts returned by customer history lookups"
    )

    # =================================================================
    # Background Tasks (Celery)
    # =================================================================
    celery_broker_url: str = Field(
        default="redis://localhost:6379/1",
        description="Celery broker URL"
    )

    celery_result_backend: str = Field(
        default="redis://localhost:6379/2",
        description="Celery result backend URL"
    )

    # =================================================================
    # Output Configuration
    # =================================================================
    output_dir: str = Field(
        default="./output",
        description="Directory for exported protocols"
    )

    # =================================================================
    # Logging Configuration
    # =================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )

    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Python logging format string"
    )

    class Config:
        """Pydantic configuration for Settings."""
        env_prefix = "PROTOCOLFORGE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached singleton).

    Using lru_cache ensures we only parse environment variables once.

    For testing, you can clear the cache:
        get_settings.cache_clear()

    Returns:
        Settings: Application settings instance
    """
    return Settings()


def get_settings_for_testing(**overrides) -> Settings:
    """
    Create a Settings instance with custom values for testing.

    Example:
        settings = get_settings_for_testing(
            batch_delay_seconds=0,
            cache_backend="memory"
        )

    Args:
        **overrides: Setting values to override

    Returns:
        Settings: New Settings instance with overrides applied
    """
    return Settings(**overrides)


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Apply the configured log level and format to the root logger."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=settings.log_format
    )
