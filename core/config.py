"""
Project configuration (pydantic-settings, nested groups via ``__``).
"""
import json
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseModel):
    url: Optional[str] = None
    max_connections: int = 10
    default_ttl: int = 300
    namespace: str = "bna-bridge"


class DatabaseSettings(BaseModel):
    url: str = "sqlite+aiosqlite:///./bna_bridge.db"
    echo: bool = False


class BnaSettings(BaseModel):
    """BNA Smart Payment merchant configuration."""

    access_key: str = ""
    secret_key: str = ""
    # staging | production; anything else falls back to staging
    environment: str = "staging"
    iframe_id: str = ""
    webhook_secret: Optional[str] = None
    test_mode: bool = False

    timeout_seconds: float = 30.0
    connect_test_timeout_seconds: float = 5.0
    max_retries: int = 2
    retry_delay: float = 0.5
    user_agent: str = "BNA-Payment-Bridge/1.0.0"

    # remote tokens live 30 minutes; cached copies must die first
    token_cache_seconds: int = 1500
    token_lifetime_seconds: int = 1800
    customer_id_ttl_seconds: int = 7 * 24 * 3600
    sweep_interval_seconds: int = 3600

    allowed_origins: list[str] = Field(
        default_factory=lambda: [
            "https://stage-api-service.bnasmartpayment.com",
            "https://api.bnasmartpayment.com",
        ]
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _parse_origins(cls, v):
        """Accept a JSON list or a comma separated string."""
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("["):
                return json.loads(s)
            return [item.strip() for item in s.split(",") if item.strip()]
        return v

    @model_validator(mode="after")
    def _validate_cache_window(self):
        if self.token_cache_seconds >= self.token_lifetime_seconds:
            raise ValueError(
                "bna.token_cache_seconds must be shorter than bna.token_lifetime_seconds"
            )
        if self.customer_id_ttl_seconds < 7 * 24 * 3600:
            raise ValueError("bna.customer_id_ttl_seconds must be at least one week")
        return self


class Settings(BaseSettings):
    """Application settings."""

    PROJECT_NAME: str = Field(default="BNA Payment Bridge")
    VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="development")
    API_PREFIX: str = Field(default="/api/v1")

    redis: RedisSettings = Field(default_factory=RedisSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    bna: BnaSettings = Field(default_factory=BnaSettings)

    CORS_ORIGINS: list = Field(default=["http://localhost:3000", "http://localhost:8000"])

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("[") and s.endswith("]"):
                return json.loads(s)
            return [item.strip() for item in s.split(",") if item.strip()]
        return v


settings = Settings()
