from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Database
    db_path: str = "/data/run_the_world.db"

    # Strava credentials
    strava_client_id: str = ""
    strava_client_secret: str = ""
    strava_api_url: str = "https://www.strava.com/api/v3"
    strava_token_url: str = "https://www.strava.com/oauth/token"
    strava_min_interval_ms: int = 6000

    # Reverse geocoding (Nominatim)
    nominatim_url: str = "https://nominatim.openstreetmap.org"
    nominatim_user_agent: str = "RunTheWorld/1.0 (Strava activity location tracker)"
    geocode_min_interval_ms: int = 1000

    # Sync behaviour
    use_mocks: bool = False
    sync_page_size: int = 200
    stale_sync_minutes: int = 30
    stale_check_minutes: int = 5
    shutdown_grace_seconds: float = 30.0
    debug: bool = False

    @property
    def effective_strava_interval_ms(self) -> int:
        return 0 if self.use_mocks else self.strava_min_interval_ms

    @property
    def effective_geocode_interval_ms(self) -> int:
        return 0 if self.use_mocks else self.geocode_min_interval_ms


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
