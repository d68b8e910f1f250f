"""
Configuration and settings for the API service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # HTTP
    cors: str = Field(default="*")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO")

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Auth0 / bearer tokens
    auth0_issuer: Optional[str] = Field(default=None)
    auth0_audience: Optional[str] = Field(default=None)
    auth_jwt_secret: Optional[str] = Field(default=None)
    jwks_cache_ttl_seconds: int = Field(default=24 * 60 * 60)

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None)
    openai_base_url: str = Field(default="https://api.openai.com/v1")

    # Rate limiting for AI and backup routes
    rate_limit_ai_window_ms: int = Field(default=3 * 60 * 60 * 1000)  # 3 hours
    rate_limit_ai_requests_max: int = Field(default=25)
    redis_url: Optional[str] = Field(default=None)
    rate_limit_key_prefix: str = Field(default="quadratic:ratelimit")

    @property
    def cors_origins(self) -> list[str]:
        origins = [o.strip() for o in self.cors.split(",") if o.strip()]
        return origins or ["*"]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
