from functools import lru_cache

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()

RATE_LIMIT_UNITS = {
    "SECOND": 1.0,
    "SECONDS": 1.0,
    "MINUTE": 60.0,
    "MINUTES": 60.0,
    "HOUR": 3600.0,
    "HOURS": 3600.0,
}

DEFAULT_RATE_LIMIT = (100, 60.0)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", frozen=True)

    app_name: str = "image-proxy-cache"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"
    log_json: bool = True
    cors_origins: list[str] = ["*"]

    custom_domain: str = "http://localhost:8080"
    path_prefix: str = "img/"
    storage_path: str = "./storage"
    file_expiry_hours: float = 24.0
    cleanup_interval: float = 3600.0

    api_key: str = ""
    rate_limit: str = "100-Minute"

    fetch_timeout: float = 5.0
    fetch_max_retries: int = 3
    retry_client_errors: bool = True
    max_fetch_bytes: int = 20 * 1024 * 1024
    block_private_hosts: bool = True
    fallback_redirect_url: str | None = None

    @field_validator("custom_domain")
    @classmethod
    def _strip_domain(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("path_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        stripped = value.strip("/")
        return f"{stripped}/" if stripped else ""

    @property
    def ttl_seconds(self) -> float:
        return self.file_expiry_hours * 3600.0

    @property
    def rate_limit_rule(self) -> tuple[int, float]:
        return parse_rate_limit(self.rate_limit)


def parse_rate_limit(value: str) -> tuple[int, float]:
    """Parse ``"<count>-<unit>"`` into ``(count, window_seconds)``.

    Malformed values fall back to 100 requests per minute.
    """
    parts = value.split("-")
    if len(parts) != 2:
        logger.warning("invalid_rate_limit", value=value)
        return DEFAULT_RATE_LIMIT
    try:
        limit = int(parts[0])
    except ValueError:
        logger.warning("invalid_rate_limit_count", value=value)
        return DEFAULT_RATE_LIMIT
    window = RATE_LIMIT_UNITS.get(parts[1].strip().upper())
    if window is None:
        logger.warning("invalid_rate_limit_unit", value=value)
        return DEFAULT_RATE_LIMIT
    return limit, window


@lru_cache
def get_settings() -> Settings:
    return Settings()
