"""
Shared configuration management for Bulletin services.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be overridden with a ``BULLETIN_``-prefixed environment
    variable (``BULLETIN_CACHE_MODE=per_cycle``) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="BULLETIN_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Row store
    database_path: str = Field(default="bulletin.db")
    seed_demo_data: bool = Field(default=True)
    default_user_id: int = Field(default=2)

    # Read cache
    cache_mode: str = Field(default="until_invalidated")
    cache_ttl_seconds: Optional[float] = Field(default=None)

    # Optimistic client
    service_url: str = Field(default="http://localhost:8000")
    request_timeout: float = Field(default=10.0)
    optimistic_policy: str = Field(default="reject")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
