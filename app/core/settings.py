from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Paths
    cache_db_path: str = Field(default="app/data/disasters_cache.db", alias="CACHE_DB_PATH")

    # ──────────────────────────────────────────────────────────────
    # Disaster cache: shared config
    # ──────────────────────────────────────────────────────────────

    disasters_cache_ttl_s: int = Field(default=300, alias="DISASTERS_CACHE_TTL_S")  # 5 min
    # Upper bound on each upstream fetch; exceeding it counts as an outage.
    disasters_timeout_s: float = Field(default=10.0, alias="DISASTERS_TIMEOUT_S")

    disasters_default_limit: int = Field(default=100, alias="DISASTERS_DEFAULT_LIMIT")
    disasters_max_limit: int = Field(default=200, alias="DISASTERS_MAX_LIMIT")

    # ──────────────────────────────────────────────────────────────
    # NWS: active weather alerts (GeoJSON)
    # api.weather.gov requires an identifying User-Agent.
    # No auth required.
    # ──────────────────────────────────────────────────────────────

    nws_enabled: bool = Field(default=True, alias="NWS_ENABLED")
    nws_alerts_url: str = Field(
        default="https://api.weather.gov/alerts/active?status=actual&message_type=alert",
        alias="NWS_ALERTS_URL",
    )
    nws_user_agent: str = Field(
        default="(disaster-response-backend, ops@disaster-response.example)",
        alias="NWS_USER_AGENT",
    )
    nws_max_alerts: int = Field(default=100, alias="NWS_MAX_ALERTS")

    # ──────────────────────────────────────────────────────────────
    # USGS: FDSN event service (GeoJSON)
    # Newest events first, magnitude floor applied server-side.
    # ──────────────────────────────────────────────────────────────

    usgs_enabled: bool = Field(default=True, alias="USGS_ENABLED")
    usgs_events_url: str = Field(
        default="https://earthquake.usgs.gov/fdsnws/event/1/query",
        alias="USGS_EVENTS_URL",
    )
    usgs_min_magnitude: float = Field(default=2.5, alias="USGS_MIN_MAGNITUDE")
    usgs_limit: int = Field(default=50, alias="USGS_LIMIT")


settings = Settings()
