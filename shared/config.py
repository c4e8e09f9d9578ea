"""
Shared configuration management for the tarification services.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TARIF_",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Decision tree engine
    max_tree_depth: int = Field(default=32, ge=1)
    money_quantum: Decimal = Field(default=Decimal("0.01"), gt=0)
    default_display_mode: str = Field(default="minimum", pattern="^(minimum|maximum)$")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str = "tarification"


@lru_cache(maxsize=None)
def get_config(service_name: str = "tarification") -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name)
