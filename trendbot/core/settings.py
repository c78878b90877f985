"""Application settings and configuration."""
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .models import DataType, Platform


class PlatformSettings(BaseModel):
    """Connection, quota and fallback settings for one platform."""

    enabled: bool = True
    api_key: Optional[SecretStr] = None
    account_id: Optional[str] = None
    base_url: str = ""
    region: str = "US"

    # Documented API quota, expressed as a fixed window
    rate_limit: int = Field(default=60, ge=1)
    rate_window_seconds: float = Field(default=60.0, gt=0)

    timeout_seconds: float = Field(default=10.0, gt=0)

    # Public page used when the official API path is unavailable
    scrape_url: Optional[str] = None

    @property
    def has_credentials(self) -> bool:
        return self.api_key is not None and bool(self.api_key.get_secret_value())


# Official API endpoint and documented quota per platform
PLATFORM_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "youtube": {
        "base_url": "https://www.googleapis.com/youtube/v3",
        "rate_limit": 100,
        "rate_window_seconds": 100.0,
    },
    "instagram": {
        "base_url": "https://graph.facebook.com/v19.0",
        "rate_limit": 200,
        "rate_window_seconds": 3600.0,
    },
    "tiktok": {
        "base_url": "https://open.tiktokapis.com/v2",
        "rate_limit": 1000,
        "rate_window_seconds": 86400.0,
    },
    "twitter": {
        "base_url": "https://api.twitter.com/1.1",
        "rate_limit": 75,
        "rate_window_seconds": 900.0,
    },
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Logging
    log_level: str = "INFO"
    # Adapters, scraper and resilience layer; DEBUG shows every upstream attempt
    source_log_level: str = "INFO"
    environment: str = "development"

    # Service configuration
    service_host: str = "0.0.0.0"
    service_port: Optional[int] = None
    debug: bool = False
    app_name: str = "TrendBot"

    # Cache
    redis_url: Optional[str] = None
    cache_ttl_hashtags_seconds: int = Field(default=900, ge=600, le=900)
    cache_ttl_keywords_seconds: int = Field(default=900, ge=600, le=900)
    cache_ttl_viral_content_seconds: int = Field(default=600, ge=600, le=900)
    cache_sweep_interval_seconds: float = Field(default=60.0, gt=0)

    # Circuit breaker
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_recovery_seconds: float = Field(default=60.0, gt=0)
    circuit_success_threshold: int = Field(default=2, ge=1)

    # Retry / backoff for transient upstream failures
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_initial_delay_seconds: float = Field(default=1.0, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1)
    retry_max_delay_seconds: float = Field(default=10.0, ge=0)

    # Rate-limit queue
    rate_limit_max_deferrals: int = Field(default=5, ge=1)

    # Scraping etiquette
    scrape_user_agent: str = "TrendBot/1.0 (+https://trendbot.dev/bot)"
    scrape_min_delay_seconds: float = Field(default=1.0, ge=1.0)

    # Query-level deadline for fresh fetches
    query_timeout_seconds: float = Field(default=5.0, gt=0)

    sources_file: Optional[Path] = None

    youtube: PlatformSettings = PlatformSettings(**PLATFORM_DEFAULTS["youtube"])
    instagram: PlatformSettings = PlatformSettings(**PLATFORM_DEFAULTS["instagram"])
    tiktok: PlatformSettings = PlatformSettings(**PLATFORM_DEFAULTS["tiktok"])
    twitter: PlatformSettings = PlatformSettings(**PLATFORM_DEFAULTS["twitter"])

    model_config = SettingsConfigDict(
        env_prefix="TRENDBOT_",
        env_nested_delimiter="__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("youtube", "instagram", "tiktok", "twitter", mode="before")
    @classmethod
    def fill_platform_defaults(cls, value: Any, info: ValidationInfo) -> Any:
        """Partial blocks (e.g. only TRENDBOT_YOUTUBE__API_KEY set) keep the platform's endpoint and quota."""
        if isinstance(value, dict):
            return {**PLATFORM_DEFAULTS[info.field_name], **value}
        return value

    def platform(self, platform: Platform) -> PlatformSettings:
        """Settings block for a platform."""
        return getattr(self, Platform(platform).value)

    def ttl_for(self, data_type: DataType) -> int:
        """Cache TTL in seconds for a data type."""
        return getattr(self, f"cache_ttl_{DataType(data_type).value}_seconds")

    def require_credentials(self, platforms: Iterable[Platform]) -> None:
        """
        Fail fast when a platform the caller intends to query has no way in.

        A platform needs either an API key or a scrape URL; a disabled
        platform is skipped here and reported at query time instead.
        """
        missing = []
        for platform in platforms:
            config = self.platform(platform)
            if not config.enabled:
                continue
            if not config.has_credentials and not config.scrape_url:
                missing.append(Platform(platform).value)

        if missing:
            raise ConfigurationError(
                f"Missing API credentials for: {', '.join(sorted(missing))}"
            )


def load_sources_config(settings: Settings, path: Optional[Path] = None) -> Settings:
    """
    Merge per-platform overrides from a YAML file into settings.

    The file looks like::

        platforms:
          youtube:
            rate_limit: 100
            scrape_url: https://www.youtube.com/feed/trending

    Returns a new Settings instance; the input is left untouched.
    """
    config_path = Path(path or settings.sources_file or "config/sources.yaml")
    if not config_path.exists():
        return settings

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    overrides: Dict[str, Any] = {}
    for name, values in (config.get("platforms") or {}).items():
        try:
            platform = Platform(name)
        except ValueError:
            raise ConfigurationError(f"Unknown platform in {config_path}: {name}")

        current = settings.platform(platform).model_dump()
        overrides[platform.value] = PlatformSettings.model_validate({**current, **(values or {})})

    return settings.model_copy(update=overrides)


@lru_cache()
def get_settings() -> Settings:
    """Get settings singleton."""
    return load_sources_config(Settings())
