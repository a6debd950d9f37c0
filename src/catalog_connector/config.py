"""Application configuration management."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.constants import (
    DEFAULT_API_VERSION,
    DEFAULT_SYNC_INTERVAL_MINUTES,
    DEFAULT_SYNC_MAX_PAGES,
    DEFAULT_SYNC_TIMEOUT_SECONDS,
    MAX_SEARCH_LIMIT,
    OAUTH_CALLBACK_PATH,
    OAUTH_STATE_TTL_SECONDS,
    UPSTREAM_MAX_PAGE_SIZE,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------
    app_name: str = "catalog-connector"
    app_env: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # API Settings
    # -------------------------------------------------------------------------
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    # The sync scheduler lives in the API process, so one worker per deployment
    api_workers: int = 1

    # -------------------------------------------------------------------------
    # Storefront OAuth App
    # -------------------------------------------------------------------------
    shopify_api_key: str = ""
    shopify_api_secret: str = ""
    shopify_scopes: str = "read_products"
    shopify_api_version: str = DEFAULT_API_VERSION
    shopify_request_timeout: float = 30.0

    public_base_url: str = "http://localhost:3000"
    oauth_callback_path: str = OAUTH_CALLBACK_PATH
    oauth_state_ttl_seconds: int = OAUTH_STATE_TTL_SECONDS
    oauth_state_cookie: str = "oauth_state"

    @field_validator("shopify_scopes", mode="before")
    @classmethod
    def parse_scopes(cls, v: str | list[str]) -> str:
        if isinstance(v, list):
            return ",".join(scope.strip() for scope in v)
        return ",".join(scope.strip() for scope in v.split(",") if scope.strip())

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def oauth_redirect_uri(self) -> str:
        """Fixed callback URL registered with the storefront app."""
        return f"{self.public_base_url}{self.oauth_callback_path}"

    # -------------------------------------------------------------------------
    # PostgreSQL Database
    # -------------------------------------------------------------------------
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "connector"
    postgres_password: str = ""
    postgres_db: str = "catalog_connector"

    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800

    @property
    def database_url(self) -> str:
        """Construct PostgreSQL connection URL."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def database_url_sync(self) -> str:
        """Construct synchronous PostgreSQL connection URL (for Alembic)."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # -------------------------------------------------------------------------
    # Redis (OAuth state tokens, worker locks)
    # -------------------------------------------------------------------------
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0
    state_store_backend: Literal["redis", "memory"] = "redis"

    @property
    def redis_url(self) -> str:
        """Construct Redis connection URL."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # -------------------------------------------------------------------------
    # Celery
    # -------------------------------------------------------------------------
    celery_broker_url: str = ""
    celery_result_backend: str = ""

    @property
    def celery_broker(self) -> str:
        """Get Celery broker URL, defaulting to Redis URL."""
        return self.celery_broker_url or self.redis_url

    @property
    def celery_backend(self) -> str:
        """Get Celery result backend URL, defaulting to Redis URL."""
        return self.celery_result_backend or self.redis_url

    # -------------------------------------------------------------------------
    # Catalog Sync
    # -------------------------------------------------------------------------
    scheduler_enabled: bool = True
    sync_interval_minutes: int = Field(DEFAULT_SYNC_INTERVAL_MINUTES, ge=1)
    sync_timeout_seconds: float = Field(DEFAULT_SYNC_TIMEOUT_SECONDS, gt=0)
    sync_max_concurrency: int = Field(4, ge=1)
    sync_page_size: int = Field(UPSTREAM_MAX_PAGE_SIZE, ge=1, le=UPSTREAM_MAX_PAGE_SIZE)
    sync_max_pages: int = Field(DEFAULT_SYNC_MAX_PAGES, ge=1)
    install_sync_mode: Literal["inline", "celery"] = "inline"

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------
    search_max_limit: int = MAX_SEARCH_LIMIT


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
