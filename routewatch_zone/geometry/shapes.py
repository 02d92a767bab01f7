"""
Geometric Shapes Module
========================

Pure geographic value objects - NO state, NO side effects.

Design:
- Immutable shapes (frozen dataclass pattern)
- Fail-fast validation in __post_init__
- Buffer polygons cache their coordinate arrays once (vectorized queries)
- Thread-safe (immutable)
"""

import hashlib
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

import numpy as np


def _is_valid_coordinate(latitude: Any, longitude: Any) -> bool:
    """True if both values are finite numbers inside lat/lng ranges."""
    if isinstance(latitude, bool) or isinstance(longitude, bool):
        return False
    if not isinstance(latitude, (int, float)) or not isinstance(longitude, (int, float)):
        return False
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        return False
    return -90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0


@dataclass(frozen=True)
class LatLng:
    """
    Geographic coordinate in decimal degrees.

    Attributes:
        latitude: [-90, 90]
        longitude: [-180, 180]
    """

    latitude: float
    longitude: float

    def __post_init__(self):
        if not _is_valid_coordinate(self.latitude, self.longitude):
            raise ValueError(
                f"Invalid coordinate: latitude={self.latitude}, longitude={self.longitude}"
            )

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LatLng":
        return cls(latitude=data["latitude"], longitude=data["longitude"])


@dataclass(frozen=True)
class RoutePoint:
    """Single recorded point of a route (timestamp in ms)."""

    latitude: float
    longitude: float
    timestamp: int = 0

    def __post_init__(self):
        if not _is_valid_coordinate(self.latitude, self.longitude):
            raise ValueError(
                f"Invalid route point: latitude={self.latitude}, longitude={self.longitude}"
            )

    @property
    def location(self) -> LatLng:
        return LatLng(self.latitude, self.longitude)


@dataclass(frozen=True)
class RoutePath:
    """
    Immutable recorded route.

    Invariants:
    - Points are non-decreasing by timestamp
    - Usable (for buffering/guidance) only with >= 2 points

    Usage:
        path = RoutePath.from_records([
            {"latitude": 0.0, "longitude": 0.0, "timestamp": 0},
            {"latitude": 0.0, "longitude": 0.001, "timestamp": 1000},
        ])
    """

    points: Tuple[RoutePoint, ...]

    def __post_init__(self):
        points = tuple(self.points)
        object.__setattr__(self, 'points', points)

        for previous, current in zip(points, points[1:]):
            if current.timestamp < previous.timestamp:
                raise ValueError(
                    f"Route points must be ordered by timestamp "
                    f"({current.timestamp} after {previous.timestamp})"
                )

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "RoutePath":
        """
        Build a path from raw records.

        Records with invalid coordinates are dropped, the rest are sorted by
        timestamp (a missing timestamp sorts as 0).
        """
        valid = []
        for record in records:
            latitude = record.get("latitude")
            longitude = record.get("longitude")
            if not _is_valid_coordinate(latitude, longitude):
                continue
            timestamp = record.get("timestamp") or 0
            valid.append(RoutePoint(latitude, longitude, int(timestamp)))

        valid.sort(key=lambda p: p.timestamp)
        return cls(points=tuple(valid))

    @property
    def is_usable(self) -> bool:
        return len(self.points) >= 2

    def latitudes(self) -> np.ndarray:
        return np.array([p.latitude for p in self.points], dtype=float)

    def longitudes(self) -> np.ndarray:
        return np.array([p.longitude for p in self.points], dtype=float)

    def to_records(self) -> list:
        return [
            {"latitude": p.latitude, "longitude": p.longitude, "timestamp": p.timestamp}
            for p in self.points
        ]

    def fingerprint(self, radius_m: float) -> str:
        """Stable digest of points + radius (used for build idempotency)."""
        digest = hashlib.sha256()
        for p in self.points:
            digest.update(f"{p.latitude:.9f},{p.longitude:.9f};".encode())
        digest.update(f"r={radius_m:.6f}".encode())
        return digest.hexdigest()

    def __len__(self) -> int:
        return len(self.points)


@dataclass(frozen=True)
class PositionSample:
    """
    Live position reading.

    Attributes:
        latitude, longitude: Current position
        heading: Degrees clockwise from north
        timestamp_ms: Sample time in milliseconds
    """

    latitude: float
    longitude: float
    heading: float
    timestamp_ms: int

    def __post_init__(self):
        if not _is_valid_coordinate(self.latitude, self.longitude):
            raise ValueError(
                f"Invalid sample: latitude={self.latitude}, longitude={self.longitude}"
            )
        if not math.isfinite(self.heading):
            raise ValueError(f"heading must be finite, got {self.heading}")

    @property
    def location(self) -> LatLng:
        return LatLng(self.latitude, self.longitude)


class BufferStatus(str, Enum):
    """Lifecycle of a buffer polygon artifact."""

    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class BufferPolygon:
    """
    Containment polygon around a route.

    Design:
    - Created once, never mutated (replaced wholesale in the store)
    - Coordinate arrays cached at init for vectorized ray casting
    - COMPLETE polygons must have >= 4 vertices

    Attributes:
        route_id: Source route
        ring: Closed ring of vertices
        radius_m: Buffer radius used
        status: pending | complete | error
        error_reason: Set when status is error
        fingerprint: Digest of source path + radius
        created_at_ms: Build time
    """

    route_id: str
    ring: Tuple[LatLng, ...]
    radius_m: float
    status: BufferStatus = BufferStatus.COMPLETE
    error_reason: Optional[str] = None
    fingerprint: Optional[str] = None
    created_at_ms: Optional[int] = None

    def __post_init__(self):
        ring = tuple(self.ring)
        object.__setattr__(self, 'ring', ring)
        object.__setattr__(self, 'status', BufferStatus(self.status))

        if self.status == BufferStatus.COMPLETE and len(ring) < 4:
            raise ValueError(
                f"Complete polygon must have at least 4 vertices, got {len(ring)}"
            )
        if self.status == BufferStatus.ERROR and not self.error_reason:
            raise ValueError("Error polygon requires an error_reason")

        lons = np.array([v.longitude for v in ring], dtype=float)
        lats = np.array([v.latitude for v in ring], dtype=float)
        lons.flags.writeable = False
        lats.flags.writeable = False
        object.__setattr__(self, '_lons', lons)
        object.__setattr__(self, '_lats', lats)

    @classmethod
    def pending(cls, route_id: str, radius_m: float) -> "BufferPolygon":
        return cls(route_id=route_id, ring=(), radius_m=radius_m, status=BufferStatus.PENDING)

    @classmethod
    def failed(
        cls,
        route_id: str,
        radius_m: float,
        reason: str,
        fingerprint: Optional[str] = None,
        created_at_ms: Optional[int] = None,
    ) -> "BufferPolygon":
        return cls(
            route_id=route_id,
            ring=(),
            radius_m=radius_m,
            status=BufferStatus.ERROR,
            error_reason=reason,
            fingerprint=fingerprint,
            created_at_ms=created_at_ms,
        )

    @property
    def is_usable(self) -> bool:
        """Only complete polygons with > 3 vertices take part in containment."""
        return self.status == BufferStatus.COMPLETE and len(self.ring) > 3

    @property
    def coordinates(self) -> Tuple[np.ndarray, np.ndarray]:
        """(longitudes, latitudes) as read-only arrays."""
        return self._lons, self._lats

    def to_dict(self) -> Dict[str, Any]:
        return {
            "route_id": self.route_id,
            "ring": [v.to_dict() for v in self.ring],
            "radius_m": self.radius_m,
            "status": self.status.value,
            "error_reason": self.error_reason,
            "fingerprint": self.fingerprint,
            "created_at_ms": self.created_at_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BufferPolygon":
        return cls(
            route_id=data["route_id"],
            ring=tuple(LatLng.from_dict(v) for v in data.get("ring", [])),
            radius_m=data["radius_m"],
            status=BufferStatus(data.get("status", BufferStatus.COMPLETE.value)),
            error_reason=data.get("error_reason"),
            fingerprint=data.get("fingerprint"),
            created_at_ms=data.get("created_at_ms"),
        )

    def __len__(self) -> int:
        return len(self.ring)
