"""Error taxonomy for the tracking and sync engine.

Local errors (ValidationError, PreconditionError, GeolocationError) are raised
before anything reaches the network. Remote errors are classified once by the
client so the persistence layer can decide between retrying, recovering,
queueing or surfacing them.
"""

from typing import Optional


class TrackerError(Exception):
    """Base class for all engine errors."""


class ValidationError(TrackerError):
    """Bad input; must be corrected by the caller. Never retried."""


class PreconditionError(TrackerError):
    """Operation not allowed in the current state (e.g. check-out without check-in)."""


class UnknownTaskError(PreconditionError):
    """No task with the given id is loaded."""


class ConfirmationRequired(PreconditionError):
    """A value would push the task past its tolerated target without consent."""

    def __init__(self, headroom: float, projected_total: float, limit: float):
        super().__init__(
            f"Projected total {projected_total:g} exceeds the allowed {limit:g}; "
            f"confirm to proceed (headroom to target: {headroom:g})"
        )
        self.headroom = headroom
        self.projected_total = projected_total
        self.limit = limit


class GeolocationError(TrackerError):
    """Device position could not be acquired (permission or availability)."""


class RemoteStoreError(TrackerError):
    """Remote persistence failure that fits no more specific kind."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class NetworkError(RemoteStoreError):
    """Connectivity failure, timeout or transient server error. Retryable."""


class ConflictError(RemoteStoreError):
    """Unique-constraint violation on (task_id, date)."""


class AuthorizationError(RemoteStoreError):
    """Permission or authentication failure. Surfaced verbatim, never retried."""


class MediaUploadError(TrackerError):
    """Evidence bytes could not be stored."""
