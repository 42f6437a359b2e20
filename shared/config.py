"""
Shared configuration management for the service search stack.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be overridden with a ``SEARCH_``-prefixed environment
    variable, e.g. ``SEARCH_REMOTE_SEARCH_URL``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SEARCH_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Remote enrichment/search service
    remote_search_url: str = Field(default="http://localhost:8000")
    remote_api_key: Optional[str] = Field(default=None)
    remote_timeout_seconds: float = Field(default=30.0, gt=0)
    remote_max_attempts: int = Field(default=3, ge=1)
    remote_backoff_base: float = Field(default=2.0, ge=0)
    remote_failure_threshold: int = Field(default=5, ge=1)
    remote_recovery_timeout: float = Field(default=60.0, ge=0)

    # Authoritative store
    store_timeout_seconds: float = Field(default=10.0, gt=0)

    # Cache namespace lifetimes (seconds)
    cache_ttl_categories: int = Field(default=3600, gt=0)
    cache_ttl_services: int = Field(default=1800, gt=0)
    cache_ttl_search: int = Field(default=300, gt=0)
    cache_ttl_user: int = Field(default=60, gt=0)
    cache_ttl_default: int = Field(default=600, gt=0)
    cache_purge_interval_seconds: float = Field(default=60.0, gt=0)

    # Search behaviour
    min_page_results: int = Field(default=5, ge=0)
    min_total_results: int = Field(default=10, ge=0)
    search_history_limit: int = Field(default=10, ge=1)
    min_query_length: int = Field(default=2, ge=1)
    max_query_length: int = Field(default=100, ge=1)
    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=50, ge=1)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
