"""Runtime configuration."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from srpsync.duration import parse_duration
from srpsync.errors import ConfigurationError


class Settings(BaseSettings):
    """Settings read from ``SRPSYNC_*`` environment variables or ``.env``.

    Tenant identity (``hostname``, ``dealer_id``) is only ever taken from
    here, never from a request body.
    """

    model_config = SettingsConfigDict(
        env_prefix="SRPSYNC_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Upstream inventory API
    api_base_url: str = Field(default="http://localhost:8080/public")
    request_timeout: float = Field(default=10.0, gt=0)
    request_retries: int = Field(default=3, ge=0)

    # Tenant
    hostname: str | None = None
    dealer_id: str | None = None

    # Upstream response caching
    cache_ttl: str = "6h"
    redis_url: str | None = None
    revalidation_secret: str | None = None

    # Client-side filtering
    result_cache_size: int = Field(default=10, ge=1)
    items_per_page: int = Field(default=24, ge=1)

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("cache_ttl")
    @classmethod
    def _check_duration(cls, value: str) -> str:
        parse_duration(value)
        return value

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def cache_ttl_ms(self) -> int:
        return parse_duration(self.cache_ttl)

    def require_tenant(self) -> tuple[str, str]:
        """Return (hostname, dealer_id) or raise if either is missing."""
        if not self.hostname or not self.dealer_id:
            raise ConfigurationError(
                "Missing required settings: SRPSYNC_HOSTNAME or SRPSYNC_DEALER_ID"
            )
        return self.hostname, self.dealer_id


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings()
