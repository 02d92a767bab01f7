"""
Geometry Layer
==============

Bounded Context: Geographic shapes, buffering and containment queries.

Responsibilities:
- Value objects (immutable)
- Buffer polygon construction around recorded routes
- Point-in-polygon tests (union over polygons)
- NO session state, NO timers, NO feedback

Design Philosophy:
- Pure functions where possible
- Immutable data structures
- Fail-fast validation
- Zero side effects (except the injected polygon store)
"""

from routewatch_zone.geometry.shapes import (
    LatLng,
    RoutePoint,
    RoutePath,
    PositionSample,
    BufferStatus,
    BufferPolygon,
)
from routewatch_zone.geometry.projection import (
    LocalProjection,
    haversine_m,
    initial_bearing_deg,
)
from routewatch_zone.geometry.buffer import BufferPolygonBuilder, BufferPolygonStore
from routewatch_zone.geometry.detector import ContainmentEngine

__all__ = [
    "LatLng",
    "RoutePoint",
    "RoutePath",
    "PositionSample",
    "BufferStatus",
    "BufferPolygon",
    "LocalProjection",
    "haversine_m",
    "initial_bearing_deg",
    "BufferPolygonBuilder",
    "BufferPolygonStore",
    "ContainmentEngine",
]
