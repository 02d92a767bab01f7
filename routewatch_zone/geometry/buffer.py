"""
Buffer Polygon Builder
======================

Turns a finished route path into its containment polygon.

Pipeline:
1. Project the path to a local planar frame (meters)
2. Simplify (Douglas-Peucker, ~1 m tolerance)
3. Minkowski-sum buffer: one capsule per segment, merged with unary_union
4. Keep the exterior ring of the (first) polygon, drop holes
5. Un-project to lat/lng and persist

Design:
- Never writes a partial result: either COMPLETE, ERROR, or nothing
- Idempotent per (route, points, radius) fingerprint
- Store is injected (anything with get/put)
"""

import logging
import math
import time
from typing import List, Optional, Protocol, Sequence

import numpy as np
from shapely.geometry import LineString, Polygon
from shapely.ops import unary_union

from routewatch_zone.errors import BufferComputationFailure, InsufficientGeometryData
from routewatch_zone.geometry.projection import LocalProjection
from routewatch_zone.geometry.shapes import (
    BufferPolygon,
    BufferStatus,
    LatLng,
    RoutePath,
    RoutePoint,
)

logger = logging.getLogger(__name__)


class BufferPolygonStore(Protocol):
    """Destination for polygon artifacts (one per route, replaced wholesale)."""

    def get(self, route_id: str) -> Optional[BufferPolygon]: ...

    def put(self, polygon: BufferPolygon) -> None: ...

    def delete(self, route_id: str) -> bool: ...

    def list_ids(self) -> List[str]: ...


class BufferPolygonBuilder:
    """
    Builds buffer polygons around route paths.

    Usage:
        builder = BufferPolygonBuilder(radius_m=9.0, store=store)
        polygon = builder.build("route-1", path)
        if polygon.status is BufferStatus.ERROR:
            print(polygon.error_reason)
    """

    def __init__(
        self,
        radius_m: float = 9.0,
        simplify_tolerance_m: float = 1.0,
        arc_segments: int = 16,
        store: Optional[BufferPolygonStore] = None,
    ):
        if radius_m <= 0:
            raise ValueError(f"radius_m must be positive, got {radius_m}")
        if simplify_tolerance_m < 0:
            raise ValueError(f"simplify_tolerance_m must be >= 0, got {simplify_tolerance_m}")
        if arc_segments < 2:
            raise ValueError(f"arc_segments must be >= 2, got {arc_segments}")

        self.radius_m = radius_m
        self.simplify_tolerance_m = simplify_tolerance_m
        self.arc_segments = arc_segments
        self.store = store

    def build(
        self,
        route_id: str,
        path: RoutePath,
        radius_m: Optional[float] = None,
    ) -> BufferPolygon:
        """
        Build (and persist) the buffer polygon for a route.

        Args:
            route_id: Route identifier
            path: Recorded route path
            radius_m: Override of the builder's default radius

        Returns:
            COMPLETE polygon, or ERROR polygon if no usable ring came out

        Raises:
            InsufficientGeometryData: Fewer than 2 points (nothing written)
            ValueError: Non-positive radius
        """
        radius = self.radius_m if radius_m is None else radius_m
        if radius <= 0:
            raise ValueError(f"radius_m must be positive, got {radius}")

        if not path.is_usable:
            logger.warning(f"⚠️ Route '{route_id}' has {len(path)} point(s), buffer not built")
            raise InsufficientGeometryData(route_id, len(path))

        fingerprint = path.fingerprint(radius)
        if self.store is not None:
            existing = self.store.get(route_id)
            if (
                existing is not None
                and existing.fingerprint == fingerprint
                and existing.status == BufferStatus.COMPLETE
            ):
                logger.debug(f"Buffer for route '{route_id}' already built, reusing it")
                return existing

        created_at_ms = int(time.time() * 1000)
        try:
            ring = self._compute_ring(route_id, path, radius)
            polygon = BufferPolygon(
                route_id=route_id,
                ring=ring,
                radius_m=radius,
                status=BufferStatus.COMPLETE,
                fingerprint=fingerprint,
                created_at_ms=created_at_ms,
            )
            logger.info(
                f"✅ Buffer built for route '{route_id}' "
                f"({len(path)} points, {len(ring)} vertices, r={radius}m)"
            )
        except BufferComputationFailure as e:
            logger.error(f"❌ {e}")
            polygon = BufferPolygon.failed(
                route_id, radius, e.reason, fingerprint=fingerprint, created_at_ms=created_at_ms
            )
        except Exception as e:
            logger.exception(f"❌ Unexpected error buffering route '{route_id}': {e}")
            polygon = BufferPolygon.failed(
                route_id, radius, "exception", fingerprint=fingerprint, created_at_ms=created_at_ms
            )

        if self.store is not None:
            self.store.put(polygon)

        return polygon

    def _compute_ring(self, route_id: str, path: RoutePath, radius: float) -> tuple:
        """Project, simplify, buffer, un-project. Raises BufferComputationFailure."""
        points = _drop_consecutive_duplicates(path.points)
        origin = points[0]
        projection = LocalProjection(origin.latitude, origin.longitude)

        xy = projection.to_xy(
            [p.latitude for p in points],
            [p.longitude for p in points],
        )
        if not np.all(np.isfinite(xy)):
            raise BufferComputationFailure(route_id, "coordinates", "non-finite projected point")

        centerline = self._simplify(xy, radius)

        if len(centerline) == 1:
            parts = [self._disc(centerline[0], radius)]
        else:
            parts = [
                self._capsule(start, end, radius)
                for start, end in zip(centerline[:-1], centerline[1:])
            ]

        merged = unary_union(parts)
        if merged.is_empty:
            raise BufferComputationFailure(route_id, "calculation", "empty buffer")

        if merged.geom_type == "MultiPolygon":
            logger.warning(
                f"⚠️ Buffer for route '{route_id}' split into {len(merged.geoms)} parts, "
                f"using the first one"
            )
            merged = merged.geoms[0]
        elif merged.geom_type != "Polygon":
            raise BufferComputationFailure(
                route_id, "calculation", f"unexpected geometry {merged.geom_type}"
            )

        exterior = np.asarray(merged.exterior.coords, dtype=float)
        if len(exterior) < 4:
            raise BufferComputationFailure(
                route_id, "calculation", f"ring has {len(exterior)} vertices"
            )

        lats, lons = projection.to_latlon(exterior)
        try:
            return tuple(LatLng(float(lat), float(lon)) for lat, lon in zip(lats, lons))
        except ValueError as e:
            raise BufferComputationFailure(route_id, "coordinates", str(e)) from e

    def _simplify(self, xy: np.ndarray, radius: float) -> np.ndarray:
        """Douglas-Peucker simplification, tolerance capped at half the radius."""
        if len(xy) < 3 or self.simplify_tolerance_m == 0:
            return xy

        tolerance = min(self.simplify_tolerance_m, radius / 2)
        simplified = LineString(xy).simplify(tolerance, preserve_topology=False)
        coords = np.asarray(simplified.coords, dtype=float)
        if len(coords) < 2:
            return xy[[0, -1]]
        return coords

    def _capsule(self, start: np.ndarray, end: np.ndarray, radius: float) -> Polygon:
        """Segment swept by a disc: two semicircles joined by straight sides."""
        dx, dy = end[0] - start[0], end[1] - start[1]
        if math.hypot(dx, dy) == 0:
            return self._disc(start, radius)

        theta = math.atan2(dy, dx)
        n = self.arc_segments + 1
        end_angles = np.linspace(theta - math.pi / 2, theta + math.pi / 2, n)
        start_angles = np.linspace(theta + math.pi / 2, theta + 3 * math.pi / 2, n)

        end_arc = np.column_stack([
            end[0] + radius * np.cos(end_angles),
            end[1] + radius * np.sin(end_angles),
        ])
        start_arc = np.column_stack([
            start[0] + radius * np.cos(start_angles),
            start[1] + radius * np.sin(start_angles),
        ])
        return Polygon(np.vstack([end_arc, start_arc]))

    def _disc(self, center: np.ndarray, radius: float) -> Polygon:
        angles = np.linspace(0.0, 2 * math.pi, 2 * self.arc_segments, endpoint=False)
        return Polygon(np.column_stack([
            center[0] + radius * np.cos(angles),
            center[1] + radius * np.sin(angles),
        ]))


def _drop_consecutive_duplicates(points: Sequence[RoutePoint]) -> list:
    result = [points[0]]
    for point in points[1:]:
        last = result[-1]
        if point.latitude != last.latitude or point.longitude != last.longitude:
            result.append(point)
    return result
