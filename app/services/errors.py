"""Failure categories for the sync pipeline.

Each provider failure carries its own retry behaviour via ``retry_delay``,
so the retry loop asks the error what to do instead of inspecting its type.
A ``None`` delay means "do not retry".
"""

from typing import Optional

DEFAULT_THROTTLE_DELAY = 900.0


class StravaError(Exception):
    """Base class for failures talking to the activity provider."""

    def retry_delay(self, attempt: int, base_delay: float) -> Optional[float]:
        return base_delay * (2 ** attempt)


class Throttled(StravaError):
    """Provider signalled rate limiting (HTTP 429)."""

    def __init__(self, message: str = "Rate limited by provider", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after

    def retry_delay(self, attempt: int, base_delay: float) -> Optional[float]:
        return self.retry_after if self.retry_after is not None else DEFAULT_THROTTLE_DELAY


class TransportError(StravaError):
    """Network failure or unexpected provider response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFound(StravaError):
    """Requested resource does not exist; retrying will not help."""

    def retry_delay(self, attempt: int, base_delay: float) -> Optional[float]:
        return None


class OwnerDeleted(Exception):
    """The athlete was removed while a sync was running."""

    def __init__(self, athlete_id: str):
        super().__init__(f"Athlete {athlete_id} no longer exists")
        self.athlete_id = athlete_id


class SyncAlreadyRunning(Exception):
    """A sync for this athlete already holds the lease."""

    def __init__(self, athlete_id: str):
        super().__init__(f"A sync is already running for athlete {athlete_id}")
        self.athlete_id = athlete_id
