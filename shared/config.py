"""
Shared configuration management for the repository authorization service.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="AUTHZ_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Relationship store
    store_backend: str = Field(default="postgres", description="postgres or memory")
    seed_example_data: bool = Field(default=False)
    postgres_dsn: str = Field(default="postgres://localhost:5432/authz")
    postgres_min_pool: int = Field(default=2)
    postgres_max_pool: int = Field(default=10)
    store_timeout_seconds: float = Field(default=5.0)

    # Policy
    role_actions_file: Optional[str] = Field(default=None)

    # Tokens
    token_private_key_file: Optional[str] = Field(default=None)
    token_ttl_seconds: int = Field(default=3600)

    # Observability
    enable_tracing: bool = Field(default=False)
    otel_exporter: str = Field(default="http://localhost:4318")


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
