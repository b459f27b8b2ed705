# colombo/core/config.py
# Runtime configuration for the proximity guide pipeline.
# Every value can be overridden through the environment or a local .env file.

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional


class Settings(BaseSettings):
    PROJECT_NAME: str = "Colombo"
    VERSION: str = "0.3.0"
    BRIEF_DESCRIPTION: str = "Finds landmarks around a walking user and narrates them."

    ENV: str = Field("development", description="Application environment (e.g., production, development)")
    LOG_LEVEL: str = Field("INFO", description="Root log level")
    HTTP_USER_AGENT: str = Field(
        "colombo-guide/0.3 (https://colombo.guide)",
        description="User-Agent sent to public APIs (Wikipedia and Overpass require one)",
    )

    # --- Discovery: throttling ---
    # The two gates are independent; both must pass before discovery re-runs.
    MOVEMENT_THRESHOLD_METERS: float = Field(5.0, description="Minimum movement before a new fix re-triggers discovery")
    MIN_FETCH_INTERVAL_SECONDS: float = Field(1.0, description="Minimum time between two discovery triggers")

    # --- Discovery: candidate search ---
    OVERPASS_API_URL: str = Field("https://overpass-api.de/api/interpreter", description="Overpass interpreter endpoint")
    OVERPASS_TIMEOUT: float = 30.0  # seconds
    SEARCH_RADIUS_METERS: float = Field(50.0, description="Radius around the user searched for candidates")

    # --- Discovery: article enrichment ---
    GEOSEARCH_API_URL: str = Field("https://en.wikipedia.org/w/api.php", description="MediaWiki API endpoint")
    GEOSEARCH_TIMEOUT: float = 10.0  # seconds
    ARTICLE_RADIUS_METERS: float = Field(10.0, description="Radius around a candidate searched for an article")
    ARTICLE_LIMIT: int = Field(1, description="Articles requested per candidate; one is enough to confirm")
    ENRICHMENT_CONCURRENCY: int = Field(4, description="Concurrent article lookups per discovery cycle")
    ENRICHMENT_TIMEOUT_SECONDS: float = Field(15.0, description="Upper bound for a single article lookup")

    # --- Narration ---
    NARRATION_BASE_URL: str = Field("https://colombo.guide", description="Narration backend base URL")
    NARRATION_TIMEOUT_SECONDS: float = Field(60.0, description="Story generation includes speech synthesis, keep it generous")
    NARRATION_LANGUAGE: Optional[str] = Field(None, description="Default language hint sent with narration requests")
    NARRATION_API_TOKEN: Optional[str] = Field(None, description="Static bearer token (development)")

    # --- Supabase (auth + place records) ---
    SUPABASE_URL: Optional[str] = Field(None, description="Supabase project URL")
    SUPABASE_ANON_KEY: Optional[str] = Field(None, description="Supabase anon (public) key")
    SUPABASE_REFRESH_TOKEN: Optional[str] = Field(None, description="Refresh token of the signed-in user")
    SUPABASE_TIMEOUT: float = 10.0  # seconds

    # --- Playback ---
    AUDIO_DOWNLOAD_TIMEOUT: float = 30.0  # seconds
    PLAYBACK_TICK_SECONDS: float = Field(0.1, description="Position sampling period while playing")
    MIN_PLAYBACK_RATE: float = 0.5
    MAX_PLAYBACK_RATE: float = 2.0

    # Pydantic configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

settings = Settings()
