"""Application configuration management."""

import os
import socket
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.constants import (
    CATALOG_MAX_PAGE_SIZE,
    DEFAULT_CLAIM_PREFIX,
    ENRICHMENT_DISPATCH_CHUNK_SIZE,
    IMPORT_CHUNK_SIZE,
    IMPORT_RUN_TTL_SECONDS,
    VARIANT_SYNC_BATCH_SIZE,
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
    app_name: str = "catalog-sync"
    app_env: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # API Settings
    # -------------------------------------------------------------------------
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 2
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    # -------------------------------------------------------------------------
    # PostgreSQL Database
    # -------------------------------------------------------------------------
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "storefront"
    postgres_password: str = ""
    postgres_db: str = "storefront"
    database_url_override: str = ""
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800

    @property
    def database_url(self) -> str:
        """Construct PostgreSQL connection URL."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # -------------------------------------------------------------------------
    # Redis
    # -------------------------------------------------------------------------
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0
    redis_socket_timeout: float = 2.0

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
    job_time_limit_seconds: int = 1200
    job_soft_time_limit_seconds: int = 1140

    @property
    def celery_broker(self) -> str:
        """Get Celery broker URL, defaulting to Redis URL."""
        return self.celery_broker_url or self.redis_url

    @property
    def celery_backend(self) -> str:
        """Get Celery result backend URL, defaulting to Redis URL."""
        return self.celery_result_backend or self.redis_url

    # -------------------------------------------------------------------------
    # Upstream Catalog (CJ) API
    # -------------------------------------------------------------------------
    catalog_api_base_url: str = "https://developers.cjdropshipping.com/api2.0"
    catalog_api_token: str = ""
    catalog_api_timeout: float = 30.0
    catalog_page_size: int = Field(default=CATALOG_MAX_PAGE_SIZE, ge=1, le=CATALOG_MAX_PAGE_SIZE)
    catalog_page_sleep_ms: int = 0

    # -------------------------------------------------------------------------
    # PID Claims
    # -------------------------------------------------------------------------
    claim_key_prefix: str = DEFAULT_CLAIM_PREFIX
    claim_ttl_seconds: int = Field(default=1800, gt=0)
    claim_owner: str = ""

    @property
    def claim_owner_id(self) -> str:
        """Owner recorded on claims acquired by this process."""
        return self.claim_owner or f"{socket.gethostname()}:{os.getpid()}"

    # -------------------------------------------------------------------------
    # Chunk Import
    # -------------------------------------------------------------------------
    import_chunk_size: int = Field(default=IMPORT_CHUNK_SIZE, ge=1)
    import_retry_delay_seconds: int = 30
    import_max_attempts: int = Field(default=3, ge=1)

    # -------------------------------------------------------------------------
    # Rate Limit Backoff
    # -------------------------------------------------------------------------
    rate_limit_backoff_base_seconds: int = Field(default=60, gt=0)
    rate_limit_backoff_cap_seconds: int = Field(default=1800, gt=0)
    rate_limit_max_attempts: int = Field(default=8, ge=1)

    # -------------------------------------------------------------------------
    # Downstream Enrichment
    # -------------------------------------------------------------------------
    enrich_translate: bool = True
    enrich_seo: bool = True
    enrich_media: bool = True
    enrich_sync_variants: bool = True
    enrich_only_created: bool = False
    enrichment_dispatch_chunk_size: int = Field(default=ENRICHMENT_DISPATCH_CHUNK_SIZE, ge=1)

    # -------------------------------------------------------------------------
    # Import Tracker
    # -------------------------------------------------------------------------
    import_tracker_ttl_seconds: int = IMPORT_RUN_TTL_SECONDS

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------
    pushgateway_url: str = ""
    pushgateway_job: str = "cj_claims"

    # -------------------------------------------------------------------------
    # Schedules
    # -------------------------------------------------------------------------
    catalog_sync_interval_minutes: int = 360
    variant_sync_interval_minutes: int = 120
    variant_sync_batch_size: int = VARIANT_SYNC_BATCH_SIZE

    @model_validator(mode="after")
    def check_claim_lease_bounds(self) -> "Settings":
        """A claim must outlive both the job timeout and any scheduled retry delay."""
        if self.rate_limit_backoff_cap_seconds > self.claim_ttl_seconds:
            raise ValueError(
                "rate_limit_backoff_cap_seconds must not exceed claim_ttl_seconds"
            )
        if self.job_time_limit_seconds >= self.claim_ttl_seconds:
            raise ValueError("job_time_limit_seconds must be shorter than claim_ttl_seconds")
        if self.import_retry_delay_seconds > self.claim_ttl_seconds:
            raise ValueError("import_retry_delay_seconds must not exceed claim_ttl_seconds")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
