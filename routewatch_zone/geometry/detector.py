"""
Containment Engine Module
=========================

Stateless containment logic - applies buffer polygons to positions.

Design:
- Pure functions (no state, no I/O)
- Ray casting (even-odd rule) in (longitude, latitude) space
- Union semantics: inside any usable polygon means on route
- Unusable polygons (pending/error/degenerate) are skipped (fail-open)
- Thread-safe (no mutations)
"""

from typing import Iterable, List

import numpy as np

from routewatch_zone.geometry.shapes import BufferPolygon, LatLng


class ContainmentEngine:
    """
    Stateless point-in-polygon tests over a set of buffer polygons.

    Usage:
        inside = ContainmentEngine.is_inside_any(sample.location, polygons)
    """

    @staticmethod
    def contains_point(point: LatLng, polygon: BufferPolygon) -> bool:
        """
        Even-odd ray casting against one polygon ring.

        Args:
            point: Position to test
            polygon: Buffer polygon (its ring may or may not be closed)

        Returns:
            True if point is inside the ring
        """
        lons, lats = polygon.coordinates
        if len(lons) < 3:
            return False

        # Close the ring if the producer did not
        if lons[0] != lons[-1] or lats[0] != lats[-1]:
            lons = np.append(lons, lons[0])
            lats = np.append(lats, lats[0])

        x, y = point.longitude, point.latitude
        xi, yi = lons[:-1], lats[:-1]
        xj, yj = lons[1:], lats[1:]

        straddles = (yi > y) != (yj > y)
        with np.errstate(divide='ignore', invalid='ignore'):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
        crossings = straddles & (x < x_cross)

        return bool(np.count_nonzero(crossings) % 2 == 1)

    @staticmethod
    def usable_polygons(polygons: Iterable[BufferPolygon]) -> List[BufferPolygon]:
        """Polygons that take part in containment (complete, > 3 vertices)."""
        return [p for p in polygons if p is not None and p.is_usable]

    @staticmethod
    def is_inside_any(point: LatLng, polygons: Iterable[BufferPolygon]) -> bool:
        """
        Union containment test.

        Args:
            point: Position to test
            polygons: 0..n buffer polygons

        Returns:
            True on the first usable polygon containing the point,
            False if none contains it (or none is usable)
        """
        for polygon in polygons:
            if polygon is None or not polygon.is_usable:
                continue
            if ContainmentEngine.contains_point(point, polygon):
                return True
        return False
