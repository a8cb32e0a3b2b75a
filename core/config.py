"""
TaskFlow settings, read from the environment and an optional ``.env`` file.

    from core.config import get_settings
    settings = get_settings()

Cache namespaces and TTLs are not settings; they live in
core.cache.cache_keys next to the key builders that use them.
"""

import os
import warnings
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PRODUCTION_ENVIRONMENTS = ("production", "prod")

# Values that ship in examples and docs; never acceptable as a signing key
KNOWN_WEAK_SECRETS = frozenset(
    {"change_me", "changeme", "secret", "your-secret-key", "jwt-secret", "supersecret", "development", "test"}
)
MIN_SECRET_LENGTH = 32


def _weak_secret_reason(secret: str) -> Optional[str]:
    if secret.lower() in KNOWN_WEAK_SECRETS:
        return f"JWT_SECRET_KEY is a well-known placeholder ('{secret}')"
    if len(secret) < MIN_SECRET_LENGTH:
        return f"JWT_SECRET_KEY should be at least {MIN_SECRET_LENGTH} characters (got {len(secret)})"
    return None


class Settings(BaseSettings):
    """
    Process-wide settings for the API, the Celery workers and beat.

    Must be set in production:
        - JWT_SECRET_KEY (32+ chars, not a placeholder)
        - DATABASE_URL
        - REDIS_HOST and CELERY_BROKER_URL
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Service
    app_name: str = Field(default="taskflow-api", validation_alias="APP_NAME")
    app_version: str = Field(default="1.0.0", validation_alias="APP_VERSION")
    api_prefix: str = "/api"
    debug: bool = Field(default=False, validation_alias="DEBUG")
    environment: str = Field(default="development", validation_alias="ENV")
    max_request_size_mb: int = Field(default=1, validation_alias="MAX_REQUEST_SIZE_MB")

    # Logging; "auto" picks console output in development and JSON otherwise
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: Literal["auto", "console", "json"] = Field(default="auto", validation_alias="LOG_FORMAT")

    # Durable store
    database_url: str = Field(default="sqlite:///taskflow.db", validation_alias="DATABASE_URL")
    db_pool_size: int = Field(default=10, validation_alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=20, validation_alias="DB_MAX_OVERFLOW")
    db_pool_pre_ping: bool = Field(default=True, validation_alias="DB_POOL_PRE_PING")

    # Tokens
    jwt_secret_key: str = Field(default="CHANGE_ME", validation_alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256")
    jwt_issuer: str = Field(default="taskflow", validation_alias="JWT_ISSUER")
    jwt_audience: str = Field(default="taskflow-client", validation_alias="JWT_AUDIENCE")
    access_token_ttl: int = Field(default=900, validation_alias="JWT_ACCESS_TOKEN_TTL")
    refresh_token_ttl: int = Field(default=60 * 60 * 24 * 7, validation_alias="JWT_REFRESH_TOKEN_TTL")

    cors_allowed_origins: str = Field(default="http://localhost:3000", validation_alias="CORS_ALLOWED_ORIGINS")

    # Cache store
    redis_host: str = Field(default="localhost", validation_alias="REDIS_HOST")
    redis_port: int = Field(default=6379, validation_alias="REDIS_PORT")
    redis_db: int = Field(default=0, validation_alias="REDIS_DB")
    redis_password: Optional[str] = Field(default=None, validation_alias="REDIS_PASSWORD")
    redis_connect_timeout: float = Field(default=10.0, validation_alias="REDIS_CONNECT_TIMEOUT")
    redis_command_timeout: float = Field(default=30.0, validation_alias="REDIS_COMMAND_TIMEOUT")
    redis_max_connections: int = Field(default=10, validation_alias="REDIS_MAX_CONNECTIONS")
    cache_key_prefix: str = Field(default="taskflow:cache:", validation_alias="CACHE_KEY_PREFIX")
    cache_default_ttl: int = Field(default=3600, validation_alias="CACHE_DEFAULT_TTL")

    # Task listing
    default_page_size: int = Field(default=10, validation_alias="DEFAULT_PAGE_SIZE")
    task_list_max_limit: int = Field(default=100, validation_alias="MAX_PAGE_SIZE")

    # Threads that publish events after a mutation commits
    background_workers: int = Field(default=4, validation_alias="BACKGROUND_WORKERS")

    # Job queue and beat
    celery_broker_url: str = Field(default="redis://localhost:6379/1", validation_alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(default="redis://localhost:6379/2", validation_alias="CELERY_RESULT_BACKEND")
    celery_task_always_eager: bool = Field(default=False, validation_alias="CELERY_TASK_ALWAYS_EAGER")
    enable_scheduler: bool = Field(default=False, validation_alias="ENABLE_SCHEDULER")

    @field_validator("jwt_secret_key")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Reject a weak signing key in production, warn about it anywhere else."""
        reason = _weak_secret_reason(v)
        if reason is None:
            return v
        if os.getenv("ENV", "development").lower() in PRODUCTION_ENVIRONMENTS:
            raise ValueError(
                f"{reason}. Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )
        warnings.warn(f"{reason}; tokens signed with it are forgeable", UserWarning, stacklevel=2)
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in PRODUCTION_ENVIRONMENTS

    @property
    def is_development(self) -> bool:
        return self.debug or self.environment.lower() in ("development", "dev", "test")

    @property
    def cors_origins_list(self) -> List[str]:
        """Comma-separated CORS_ALLOWED_ORIGINS as a list."""
        return [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings"]
