from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    user_agent: str = Field(default="hazard-feed/0.1", validation_alias="USER_AGENT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    time_api_base: str = Field(
        default="https://worldtimeapi.org/api", validation_alias="TIME_API_BASE"
    )
    usgs_base: str = Field(
        default="https://earthquake.usgs.gov/earthquakes/feed/v1.0",
        validation_alias="USGS_BASE",
    )
    usgs_feeds: str = Field(
        default="all_day,2.5_day,1.0_day", validation_alias="USGS_FEEDS"
    )
    usgs_max_events: int = Field(default=10, validation_alias="USGS_MAX_EVENTS")
    open_meteo_bases: str = Field(
        default="https://api.open-meteo.com/v1", validation_alias="OPEN_METEO_BASES"
    )
    geocoding_base: str = Field(
        default="https://geocoding-api.open-meteo.com/v1",
        validation_alias="GEOCODING_BASE",
    )
    forecast_days: int = Field(default=3, validation_alias="FORECAST_DAYS")
    watchlist_path: Path = Field(
        default=Path("feeds/locations.yaml"), validation_alias="WATCHLIST_PATH"
    )

    connect_timeout_seconds: float = Field(
        default=5.0, validation_alias="CONNECT_TIMEOUT_SECONDS"
    )
    read_timeout_seconds: float = Field(
        default=15.0, validation_alias="READ_TIMEOUT_SECONDS"
    )
    request_deadline_seconds: float = Field(
        default=20.0, validation_alias="REQUEST_DEADLINE_SECONDS"
    )
    max_concurrent_sources: int = Field(
        default=4, validation_alias="MAX_CONCURRENT_SOURCES"
    )
    max_requests_per_host: int = Field(
        default=2, validation_alias="MAX_REQUESTS_PER_HOST"
    )

    feed_cap: int = Field(default=20, validation_alias="FEED_CAP")
    min_magnitude: float = Field(default=1.0, validation_alias="MIN_MAGNITUDE")
    refresh_interval_seconds: int = Field(
        default=60, validation_alias="REFRESH_INTERVAL_SECONDS"
    )

    time_cache_ttl_seconds: float = Field(
        default=30.0, validation_alias="TIME_CACHE_TTL_SECONDS"
    )
    time_retry_seconds: float = Field(default=5.0, validation_alias="TIME_RETRY_SECONDS")
    time_resync_seconds: float = Field(
        default=30.0, validation_alias="TIME_RESYNC_SECONDS"
    )
    clock_tick_seconds: float = Field(default=1.0, validation_alias="CLOCK_TICK_SECONDS")

    @property
    def usgs_feed_names(self) -> list[str]:
        return split_csv(self.usgs_feeds)

    @property
    def open_meteo_base_urls(self) -> list[str]:
        return split_csv(self.open_meteo_bases)


def split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]
