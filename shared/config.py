"""
Shared configuration management for the product gateway.
"""

from typing import List, Literal, Optional

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GATEWAY_",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )

    # Environment
    env: Literal["development", "production"] = Field(
        default="development",
        validation_alias=AliasChoices("GATEWAY_ENV", "NODE_ENV"),
    )
    log_level: str = "info"

    # Listener
    host: str = "0.0.0.0"
    port: int = 5921
    shutdown_grace_seconds: Optional[float] = None

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @property
    def verbose_errors(self) -> bool:
        return not self.is_production


class GatewayConfig(BaseConfig):
    """Gateway configuration, resolved once at startup."""

    # Upstream
    backend_url: Optional[str] = Field(default=None, validation_alias="BACKEND_URL")
    backend_host: str = Field(default="backend", validation_alias="BACKEND_HOST")
    backend_port: int = Field(default=3847, validation_alias="BACKEND_PORT")
    upstream_timeout_seconds: float = Field(default=30.0, gt=0)
    health_check_timeout_seconds: float = Field(default=5.0, gt=0)

    # Payload bounds
    max_request_body_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    max_upstream_response_bytes: int = Field(default=50 * 1024 * 1024, gt=0)

    # CORS
    cors_allow_all: Optional[bool] = None
    cors_origins: str = "http://localhost:5921"

    # Rate limiting
    rate_limit_profile: Optional[Literal["permissive", "strict"]] = None
    rate_limit_window_seconds: Optional[int] = Field(default=None, gt=0)
    rate_limit_max_requests: Optional[int] = Field(default=None, gt=0)
    rate_limit_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    trust_forwarded_for: bool = False

    @model_validator(mode="after")
    def _gate_relaxed_cors(self) -> "GatewayConfig":
        if self.is_production and self.cors_allow_all:
            raise ValueError("cors_allow_all cannot be enabled in production")
        return self

    @property
    def backend_base_url(self) -> str:
        if self.backend_url:
            return self.backend_url.rstrip("/")
        return f"http://{self.backend_host}:{self.backend_port}"

    @property
    def cors_relaxed(self) -> bool:
        if self.cors_allow_all is None:
            return not self.is_production
        return self.cors_allow_all

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def effective_rate_limit_profile(self) -> str:
        if self.rate_limit_profile:
            return self.rate_limit_profile
        return "strict" if self.is_production else "permissive"


def get_config(**overrides) -> GatewayConfig:
    """Get the gateway configuration from the environment."""
    return GatewayConfig(**overrides)
