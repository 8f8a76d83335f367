"""Application configuration via environment variables."""

from functools import lru_cache
from typing import Literal, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Transit Planner API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Agency API key, injected into realtime feed URLs
    transit_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("TRANSIT_API_KEY", "OBA_API_KEY"),
    )
    api_key_param: str = "key"

    # Static schedule source
    gtfs_static_url: str = Field(
        default="https://metro.kingcounty.gov/GTFS/google_transit.zip",
        validation_alias=AliasChoices("STATIC_GTFS_URL", "GTFS_STATIC_URL"),
    )
    gtfs_static_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GTFS_STATIC_PATH", "STATIC_GTFS_PATH"),
    )
    gtfs_load_strict: bool = False
    gtfs_fetch_timeout_sec: int = 120
    gtfs_fetch_max_retries: int = 3
    gtfs_fetch_backoff_base: float = 2.0

    # Realtime feeds (empty URL disables the feed)
    gtfs_trip_updates_url: str = Field(
        default="",
        validation_alias=AliasChoices("TRIP_UPDATES_URL", "GTFS_TRIP_UPDATES_URL"),
    )
    gtfs_service_alerts_url: str = Field(
        default="",
        validation_alias=AliasChoices("SERVICE_ALERTS_URL", "GTFS_SERVICE_ALERTS_URL"),
    )
    realtime_timeout_sec: float = 5.0
    realtime_max_retries: int = 1
    realtime_backoff_base: float = 2.0
    arrivals_ttl_sec: int = 30
    alerts_ttl_sec: int = 120

    # Reliability aggregates
    reliability_snapshot_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("RELIABILITY_SNAPSHOT_PATH", "RELIABILITY_PATH"),
    )
    reliability_min_samples: int = Field(default=30, ge=1)
    reliability_freshness_days: int = Field(default=30, ge=1)

    # Scoring configuration (display score, 0-100)
    p95_max_delay_sec: int = 900
    p50_max_delay_sec: int = 300
    weight_on_time_rate: float = 0.6
    weight_p95_component: float = 0.25
    weight_p50_component: float = 0.15

    # Planner
    service_timezone: str = "America/Los_Angeles"
    walking_speed_m_per_min: float = Field(default=83.4, gt=0)
    max_walking_distance_m: float = Field(default=800.0, gt=0)
    max_transfers: int = Field(default=4, ge=0)
    max_transfers_limit: int = Field(default=8, ge=0)
    search_window_minutes: int = Field(default=240, gt=0)
    search_departure_iterations: int = Field(default=3, ge=1, le=10)
    transfer_radius_m: float = Field(default=250.0, ge=0)
    top_k: int = Field(default=3, ge=1)
    duration_tolerance: float = Field(default=0.10, ge=0)

    # API limits
    default_nearby_radius_m: float = 500.0
    max_nearby_radius_m: float = 5000.0
    default_departures_limit: int = 10

    # Data attribution
    data_attribution: str = (
        "Transit data provided by King County Metro and Sound Transit. "
        "This data is provided 'as is' without warranty."
    )

    def missing_required_env(self) -> list[str]:
        """Return required environment variables that are missing or empty."""
        missing: list[str] = []

        if not self.gtfs_static_url and not self.gtfs_static_path:
            missing.append("GTFS_STATIC_URL")

        return missing

    @property
    def gtfs_trip_updates_full_url(self) -> str:
        """Get full trip updates URL with API key."""
        return _with_api_key(self.gtfs_trip_updates_url, self.transit_api_key, self.api_key_param)

    @property
    def gtfs_service_alerts_full_url(self) -> str:
        """Get full service alerts URL with API key."""
        return _with_api_key(
            self.gtfs_service_alerts_url, self.transit_api_key, self.api_key_param
        )


def _with_api_key(url: str, api_key: str, param: str = "key") -> str:
    """Return URL with api key injected unless already present."""
    if not url or not api_key:
        return url

    if "${TRANSIT_API_KEY}" in url:
        return url.replace("${TRANSIT_API_KEY}", api_key)

    parsed = urlparse(url)
    query_pairs = parse_qsl(parsed.query, keep_blank_values=True)
    if any(key.lower() in (param.lower(), "apikey") for key, _ in query_pairs):
        return url

    query_pairs.append((param, api_key))
    new_query = urlencode(query_pairs)
    return urlunparse(parsed._replace(query=new_query))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
