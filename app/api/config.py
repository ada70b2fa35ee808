from fastapi import APIRouter
from pydantic import BaseModel

from app.core.config import get_settings

router = APIRouter(prefix="/api", tags=["config"])


class HealthResponse(BaseModel):
    status: str
    version: str


class ConfigResponse(BaseModel):
    db_path: str
    strava_api_url: str
    strava_min_interval_ms: int
    nominatim_url: str
    geocode_min_interval_ms: int
    use_mocks: bool
    sync_page_size: int
    stale_sync_minutes: int
    debug: bool


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version="0.1.0")


@router.get("/config", response_model=ConfigResponse)
async def get_config() -> ConfigResponse:
    """Get current configuration (excluding secrets)."""
    settings = get_settings()
    return ConfigResponse(
        db_path=settings.db_path,
        strava_api_url=settings.strava_api_url,
        strava_min_interval_ms=settings.effective_strava_interval_ms,
        nominatim_url=settings.nominatim_url,
        geocode_min_interval_ms=settings.effective_geocode_interval_ms,
        use_mocks=settings.use_mocks,
        sync_page_size=settings.sync_page_size,
        stale_sync_minutes=settings.stale_sync_minutes,
        debug=settings.debug,
    )
