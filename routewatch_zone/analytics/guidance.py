"""
Guidance Calculator Module
==========================

Return guidance for a person who left their route.

Design:
- Stateless: nothing cached between calls
- Nearest point on any segment via perpendicular projection (local meters)
- Distance is great-circle (haversine) to the nearest point
- Steps = distance / stride, rounded half up, never negative
- Turn = bearing vs heading, with a straight-ahead tolerance
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple

import numpy as np

from routewatch_zone.geometry.projection import (
    LocalProjection,
    haversine_m,
    initial_bearing_deg,
)
from routewatch_zone.geometry.shapes import LatLng, PositionSample, RoutePath


class TurnDirection(str, Enum):
    LEFT = "left"
    RIGHT = "right"
    STRAIGHT = "straight"


@dataclass(frozen=True)
class GuidanceTarget:
    """
    Immutable guidance snapshot.

    Attributes:
        origin: Current position
        nearest_point: Closest point on any route
        distance_m: Great-circle distance origin -> nearest_point
        steps_to_target: Non-negative step count
        turn_direction: left | right | straight
        bearing_deg: Bearing origin -> nearest_point, [0, 360)
    """

    origin: LatLng
    nearest_point: LatLng
    distance_m: float
    steps_to_target: int
    turn_direction: TurnDirection
    bearing_deg: float

    @property
    def guidance_line(self) -> Tuple[LatLng, LatLng]:
        """Two-point line from the current position back to the route."""
        return (self.origin, self.nearest_point)

    def __str__(self) -> str:
        return (
            f"{self.steps_to_target} steps {self.turn_direction.value} "
            f"({self.distance_m:.1f}m, bearing {self.bearing_deg:.0f}°)"
        )


def normalize_angle(degrees: float) -> float:
    """Normalize an angle difference into (-180, 180]."""
    result = (degrees + 180.0) % 360.0 - 180.0
    if result == -180.0:
        return 180.0
    return result


class GuidanceCalculator:
    """
    Computes nearest route point, steps and turn direction.

    Usage:
        calculator = GuidanceCalculator(stride_length_m=0.6, turn_tolerance_deg=15)
        target = calculator.compute(sample, paths)
        if target is not None:
            print(target.steps_to_target, target.turn_direction)
    """

    def __init__(self, stride_length_m: float = 0.6, turn_tolerance_deg: float = 15.0):
        if stride_length_m <= 0:
            raise ValueError(f"stride_length_m must be positive, got {stride_length_m}")
        if not 0 <= turn_tolerance_deg <= 180:
            raise ValueError(f"turn_tolerance_deg must be in [0, 180], got {turn_tolerance_deg}")

        self.stride_length_m = stride_length_m
        self.turn_tolerance_deg = turn_tolerance_deg

    def compute(
        self, sample: PositionSample, paths: Iterable[RoutePath]
    ) -> Optional[GuidanceTarget]:
        """
        Full guidance for one position sample.

        Returns:
            GuidanceTarget, or None if no path has >= 2 points
        """
        origin = sample.location
        nearest = self.nearest_point(origin, paths)
        if nearest is None:
            return None

        nearest_point, distance_m = nearest
        bearing = initial_bearing_deg(
            origin.latitude, origin.longitude,
            nearest_point.latitude, nearest_point.longitude,
        )

        return GuidanceTarget(
            origin=origin,
            nearest_point=nearest_point,
            distance_m=distance_m,
            steps_to_target=self.steps_for(distance_m),
            turn_direction=self.turn_direction(sample.heading, bearing),
            bearing_deg=bearing,
        )

    def nearest_point(
        self, origin: LatLng, paths: Iterable[RoutePath]
    ) -> Optional[Tuple[LatLng, float]]:
        """
        Closest point on any segment of any usable path.

        Segments are projected into a local frame centred on the origin, so
        the origin is (0, 0) and the closest point on segment AB is
        A + clamp(-A·AB / |AB|², 0, 1) * AB. The first path wins exact ties.

        Returns:
            (nearest point, haversine distance in meters), or None
        """
        projection = LocalProjection(origin.latitude, origin.longitude)
        best_xy = None
        best_d2 = math.inf

        for path in paths:
            if path is None or not path.is_usable:
                continue

            xy = projection.to_xy(path.latitudes(), path.longitudes())
            a = xy[:-1]
            ab = xy[1:] - a
            length2 = np.einsum('ij,ij->i', ab, ab)

            with np.errstate(divide='ignore', invalid='ignore'):
                t = np.where(length2 > 0, -np.einsum('ij,ij->i', a, ab) / length2, 0.0)
            t = np.clip(t, 0.0, 1.0)

            closest = a + t[:, None] * ab
            d2 = np.einsum('ij,ij->i', closest, closest)
            idx = int(np.argmin(d2))

            if d2[idx] < best_d2:
                best_d2 = float(d2[idx])
                best_xy = closest[idx]

        if best_xy is None:
            return None

        lats, lons = projection.to_latlon(best_xy)
        nearest_point = LatLng(float(lats[0]), float(lons[0]))
        distance_m = haversine_m(
            origin.latitude, origin.longitude,
            nearest_point.latitude, nearest_point.longitude,
        )
        return nearest_point, distance_m

    def steps_for(self, distance_m: float) -> int:
        """Distance to steps, rounded half up, never negative."""
        return max(0, int(math.floor(distance_m / self.stride_length_m + 0.5)))

    def turn_direction(self, heading_deg: float, bearing_deg: float) -> TurnDirection:
        """
        Turn needed to face the target.

        Positive difference (bearing clockwise of heading) means right.
        """
        diff = normalize_angle(bearing_deg - heading_deg)
        if abs(diff) <= self.turn_tolerance_deg:
            return TurnDirection.STRAIGHT
        return TurnDirection.RIGHT if diff > 0 else TurnDirection.LEFT
