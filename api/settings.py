"""Application settings loaded from environment variables via pydantic-settings.

Environment variables win over the ``.env`` file, which wins over the
defaults below. ``ticketmaster_api_key`` maps to ``TICKETMASTER_API_KEY``.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === Ticketmaster Discovery API ===
    ticketmaster_api_key: str = ""
    ticketmaster_base_url: str = "https://app.ticketmaster.com"

    # === Geocoding fallback ===
    geocoder_base_url: str = "https://nominatim.openstreetmap.org"
    geocoder_user_agent: str = "event-map-backend/0.1 (geocoding fallback)"

    # === Storage ===
    database_path: str = "events.db"

    # === Ingestion policy ===
    page_size: int = 200
    max_pages: int = 4
    backfill_weeks: int = 8
    max_concurrency: int = 10
    source_max_retries: int = 3
    source_retry_backoff: float = 2.0

    # === Server ===
    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"