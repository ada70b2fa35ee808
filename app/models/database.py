import enum
from datetime import datetime
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    Float,
    Enum,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from app.core.database import Base

UNKNOWN_COUNTRY = "Unknown"


class SyncStatus(str, enum.Enum):
    """Lifecycle of an owner's activity sync."""

    NOT_STARTED = "NOT_STARTED"
    SYNCING = "SYNCING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class User(Base):
    """A connected Strava athlete and their sync progress."""

    __tablename__ = "users"

    athlete_id = Column(String, primary_key=True)
    sync_status = Column(Enum(SyncStatus), nullable=False, default=SyncStatus.NOT_STARTED)
    sync_progress = Column(Integer, nullable=False, default=0)
    sync_total = Column(Integer, nullable=True)  # best-effort, from athlete stats
    sync_started_at = Column(DateTime, nullable=True)
    sync_last_activity_at = Column(DateTime, nullable=True)  # liveness heartbeat
    last_sync_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Token(Base):
    """OAuth tokens for a Strava athlete."""

    __tablename__ = "tokens"

    athlete_id = Column(String, ForeignKey("users.athlete_id", ondelete="CASCADE"), primary_key=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(Integer, nullable=False)  # unix seconds
    scopes = Column(String, nullable=True)


class Activity(Base):
    """One ingested Strava activity with its resolved location."""

    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    athlete_id = Column(String, ForeignKey("users.athlete_id", ondelete="CASCADE"), nullable=False)
    activity_id = Column(String, nullable=False)
    name = Column(String, nullable=True)
    type = Column(String, nullable=True)
    distance = Column(Float, nullable=False, default=0.0)  # meters
    moving_time = Column(Integer, nullable=False, default=0)  # seconds
    start_date = Column(DateTime, nullable=False)
    country = Column(String, nullable=False, default=UNKNOWN_COUNTRY)
    city = Column(String, nullable=True)
    state = Column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("athlete_id", "activity_id", name="uix_activity_athlete_activity"),
        Index("ix_activities_athlete_country", "athlete_id", "country"),
    )


class LocationStat(Base):
    """Per (country, city) rollup of an athlete's activities. Rebuilt, never patched."""

    __tablename__ = "location_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    athlete_id = Column(String, ForeignKey("users.athlete_id", ondelete="CASCADE"), nullable=False, index=True)
    country = Column(String, nullable=False)
    city = Column(String, nullable=True)
    activity_count = Column(Integer, nullable=False)
    total_distance = Column(Float, nullable=False)
    total_time = Column(Integer, nullable=False)
    first_activity = Column(DateTime, nullable=False)
    last_activity = Column(DateTime, nullable=False)
