"""Pydantic request/response models for API endpoints."""

from datetime import datetime
from pydantic import BaseModel, field_validator

from app.models.database import SyncStatus


class AthleteRequest(BaseModel):
    """Body for endpoints acting on one athlete."""
    athlete_id: str

    @field_validator("athlete_id")
    @classmethod
    def validate_athlete_id(cls, v):
        if not v.strip():
            raise ValueError("athlete_id is required")
        return v.strip()


class SyncResponse(BaseModel):
    status: str
    athlete_id: str


class SyncStatusResponse(BaseModel):
    """Fields polled by the dashboard while a sync runs."""
    athlete_id: str
    sync_status: SyncStatus
    sync_progress: int
    sync_total: int | None
    sync_started_at: datetime | None
    sync_last_activity_at: datetime | None
    last_sync_at: datetime | None
    is_running: bool
    activity_count: int


class DisconnectResponse(BaseModel):
    success: bool
    message: str


class UpdateStatsResponse(BaseModel):
    success: bool
    stats_count: int


class LocationStatResponse(BaseModel):
    """One (country, city) summary row."""
    country: str
    city: str | None
    activity_count: int
    total_distance: float
    total_time: int
    first_activity: datetime
    last_activity: datetime

    class Config:
        from_attributes = True
