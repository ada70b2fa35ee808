from contextlib import asynccontextmanager
from fastapi import FastAPI

from app.core.config import get_settings
from app.core.database import async_session_maker, init_db
from app.core.shutdown import graceful_shutdown, shutdown_token, sync_runs
from app.api import config, sync, locations
from app.services.scheduler import start_scheduler, stop_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    # Startup
    await init_db()
    start_scheduler()
    yield
    # Shutdown: stop in-flight syncs and leave them resumable
    await graceful_shutdown(
        shutdown_token,
        async_session_maker,
        runs=sync_runs,
        grace_seconds=get_settings().shutdown_grace_seconds,
    )
    stop_scheduler()


# Create FastAPI application
app = FastAPI(
    title="Run The World",
    description="Syncs Strava activities and maps where you have been active",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(config.router)
app.include_router(sync.router)
app.include_router(locations.router)
