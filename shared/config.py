"""
Shared configuration management for the What Went Wrong API.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    app_env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Identity provider
    auth0_domain: Optional[str] = Field(default=None)
    auth0_audience: Optional[str] = Field(default=None)
    jwt_algorithms: str = Field(default="RS256")
    jwks_refresh_interval: float = Field(default=300.0)
    jwks_min_refresh_interval: float = Field(default=30.0)
    jwks_http_timeout: float = Field(default=5.0)

    # Plan storage
    postgres_dsn: str = Field(default="postgresql://localhost:5432/whatwentwrong")
    postgres_pool_min_size: int = Field(default=2)
    postgres_pool_max_size: int = Field(default=10)
    postgres_command_timeout: float = Field(default=10.0)
    plan_store_max_attempts: int = Field(default=3)
    plan_store_retry_base_delay: float = Field(default=0.1)

    @property
    def algorithm_list(self) -> List[str]:
        """Accepted JWT signing algorithms, from a comma separated setting."""
        return [alg.strip() for alg in self.jwt_algorithms.split(",") if alg.strip()]


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
