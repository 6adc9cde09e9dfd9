"""
Shared configuration management for the product catalog services.
"""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    environment: str = Field(default="development")
    log_level: str = Field(default="info")

    # HTTP
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)
    api_prefix: str = Field(default="/api/v1")

    # Relational store
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=5432)
    db_user: str = Field(default="postgres")
    db_password: str = Field(default="postgres")
    db_name: str = Field(default="products")
    db_pool_min_size: int = Field(default=5)
    db_pool_max_size: int = Field(default=25)
    db_conn_max_lifetime: float = Field(default=300.0)
    db_connect_timeout: float = Field(default=5.0)
    db_command_timeout: float = Field(default=10.0)

    # Cache
    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379)
    redis_db: int = Field(default=0)
    redis_socket_timeout: float = Field(default=2.0)

    # Observability
    enable_tracing: bool = Field(default=False)
    otel_exporter_endpoint: str = Field(
        default="http://jaeger-collector:4317",
        validation_alias=AliasChoices("otel_exporter_endpoint", "jaeger_endpoint"),
    )

    # Probes and shutdown
    readiness_timeout: float = Field(default=2.0)
    shutdown_grace_period: float = Field(default=30.0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str

    def __init__(self, service_name: str, **kwargs):
        super().__init__(service_name=service_name, **kwargs)


def get_config(service_name: str, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, **overrides)
