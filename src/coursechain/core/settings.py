"""Application settings and configuration.

This module defines all configuration options for the CourseChain API.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    Core services never read this object directly; the API dependency layer
    passes the relevant values into their constructors.
    """

    # Application metadata
    app_name: str = Field(default="CourseChain API", alias="APP_NAME")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 7,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )
    nonce_ttl_seconds: int = Field(default=600, alias="NONCE_TTL_SECONDS")

    # Database configuration
    database_url: str = Field(default="sqlite:///./coursechain.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Redis configuration for response caching and rate limiting
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    cache_backend: Literal["redis", "memory", "none"] = Field(
        default="redis",
        alias="CACHE_BACKEND",
    )
    cache_timeout_seconds: float = Field(default=2.0, alias="CACHE_TIMEOUT_SECONDS")

    # Audit trail
    audit_enabled: bool = Field(default=True, alias="AUDIT_ENABLED")
    audit_queue_size: int = Field(default=1000, alias="AUDIT_QUEUE_SIZE")
    audit_max_retries: int = Field(default=3, alias="AUDIT_MAX_RETRIES")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url


settings = Settings()  # type: ignore[call-arg]
