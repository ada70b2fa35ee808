# Database models
from app.models.database import (
    UNKNOWN_COUNTRY,
    SyncStatus,
    User,
    Token,
    Activity,
    LocationStat,
)

__all__ = [
    "UNKNOWN_COUNTRY",
    "SyncStatus",
    "User",
    "Token",
    "Activity",
    "LocationStat",
]
