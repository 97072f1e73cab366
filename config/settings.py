"""
Configuration settings for the odds aggregation service.
Uses pydantic-settings for validation and environment variable loading.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OddsAPISettings(BaseModel):
    """The Odds API (primary provider) configuration."""

    api_key: str = Field(default="", description="The Odds API key")
    base_url: str = "https://api.the-odds-api.com/v4"

    # Regions affect which bookmakers are returned
    regions: list[str] = Field(default_factory=lambda: ["us"])
    markets: list[str] = Field(default_factory=lambda: ["h2h", "spreads", "totals"])

    # Hard timeout on every request (seconds)
    timeout_seconds: float = 10.0

    # Rate limiting
    requests_per_minute: int = 30
    rate_limit_backoff_seconds: float = 60.0


class SchedulerSettings(BaseModel):
    """Live update scheduler settings."""

    # Sports clients may subscribe to (Odds API sport keys)
    sports: list[str] = Field(default_factory=lambda: [
        "basketball_nba",
        "americanfootball_nfl",
        "baseball_mlb",
        "icehockey_nhl",
        "americanfootball_ncaaf",
        "basketball_ncaab",
    ])

    odds_interval_seconds: float = 5.0      # Aggressive odds refresh
    provider_timeout_seconds: float = 8.0   # Cap on each provider before falling back
    fetch_timeout_seconds: float = 20.0     # Hard cap on one ingestion call (whole chain)
    cache_grace_seconds: float = 300.0      # Keep cache 5 min after last unsubscribe

    # Serve demo data when the primary provider fails
    fallback_to_synthetic: bool = True
    synthetic_seed: Optional[int] = None

    @field_validator("sports")
    @classmethod
    def _lowercase_sports(cls, value: list[str]) -> list[str]:
        return [sport.strip().lower() for sport in value if sport.strip()]

    @model_validator(mode="after")
    def _fetch_timeout_covers_fallback(self) -> "SchedulerSettings":
        if self.fetch_timeout_seconds <= self.provider_timeout_seconds:
            raise ValueError("fetch_timeout_seconds must exceed provider_timeout_seconds")
        return self


class DetectionSettings(BaseModel):
    """Opportunity and movement detection thresholds."""

    # Middles: minimum gap between two books' lines (points)
    middle_threshold: float = 1.0

    # Movement: American odds points
    movement_price_threshold: int = 5       # Report quote moves of 5+ points
    movement_line_threshold: float = 0.5    # ...or half a point of line
    steam_threshold: int = 20               # 20+ point move = steam

    # Line movement history per game (snapshots)
    history_size: int = 100

    # Std dev (American odds points) under which books "agree"
    consensus_tolerance: float = 10.0


class ServerSettings(BaseModel):
    """WebSocket subscription server."""

    host: str = "0.0.0.0"
    port: int = 8765
    admin_token: str = Field(default="", description="Token for cache invalidation")
    max_message_bytes: int = 64 * 1024

    # Periodic metrics log line (0 disables)
    status_interval_seconds: float = 60.0


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore"
    )

    # Debug settings
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool = True

    # Sub-settings
    odds_api: OddsAPISettings = Field(default_factory=OddsAPISettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


# Global settings instance
settings = Settings()
