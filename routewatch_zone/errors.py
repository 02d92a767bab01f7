"""
Deviation Engine Errors
=======================

Exception taxonomy for the geofence engine.

Design:
- Single base class (callers can catch RouteWatchError)
- None of these are process-fatal: builders convert, state machine logs
"""


class RouteWatchError(Exception):
    """Base class for all engine errors."""


class InsufficientGeometryData(RouteWatchError):
    """Route path has fewer than 2 usable points. Nothing is written."""

    def __init__(self, route_id: str, point_count: int):
        self.route_id = route_id
        self.point_count = point_count
        super().__init__(
            f"Route '{route_id}' has {point_count} usable point(s), at least 2 are required"
        )


class BufferComputationFailure(RouteWatchError):
    """
    Buffer computation produced no usable ring.

    Attributes:
        reason: Short machine-readable reason ("calculation", "coordinates", "exception")
    """

    def __init__(self, route_id: str, reason: str, detail: str = ""):
        self.route_id = route_id
        self.reason = reason
        self.detail = detail
        message = f"Buffer for route '{route_id}' failed ({reason})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NoReferenceGeometry(RouteWatchError):
    """Session has zero usable polygons (detection fails open)."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' has no usable buffer polygons")


class NotificationDeliveryFailure(RouteWatchError):
    """Caregiver notification could not be delivered. Logged, never retried here."""

    def __init__(self, session_id: str, status: str, cause: Exception):
        self.session_id = session_id
        self.status = status
        self.cause = cause
        super().__init__(
            f"Failed to deliver '{status}' notification for session '{session_id}': {cause}"
        )
