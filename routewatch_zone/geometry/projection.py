"""
Local Projection Module
=======================

Spherical helpers and a local planar frame in meters.

Design:
- Equirectangular projection centred on an origin (accurate at route scale)
- Pure functions, no state beyond the origin
- Haversine for great-circle distances, initial bearing in [0, 360)
"""

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

EARTH_RADIUS_METERS = 6371008.8


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two lat/lng points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(a)))


def initial_bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Initial bearing from point 1 to point 2.

    Returns:
        Degrees clockwise from north, normalized to [0, 360)
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_lambda = math.radians(lon2 - lon1)

    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    bearing = math.degrees(math.atan2(y, x))
    return (bearing + 360.0) % 360.0


@dataclass(frozen=True)
class LocalProjection:
    """
    Equirectangular projection around an origin.

    x grows east, y grows north, both in meters.

    Usage:
        proj = LocalProjection(origin_lat=40.0, origin_lon=-3.7)
        xy = proj.to_xy(lats, lons)          # (N, 2)
        lats, lons = proj.to_latlon(xy)
    """

    origin_lat: float
    origin_lon: float

    def __post_init__(self):
        # Clamp so the inverse stays finite at the poles
        cos_lat = max(math.cos(math.radians(self.origin_lat)), 1e-12)
        object.__setattr__(self, '_cos_lat', cos_lat)

    def to_xy(self, lats, lons) -> np.ndarray:
        """Project latitude/longitude arrays to an (N, 2) array in meters."""
        lats = np.asarray(lats, dtype=float)
        lons = np.asarray(lons, dtype=float)
        x = EARTH_RADIUS_METERS * np.radians(lons - self.origin_lon) * self._cos_lat
        y = EARTH_RADIUS_METERS * np.radians(lats - self.origin_lat)
        return np.column_stack([x, y])

    def to_latlon(self, xy: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Inverse of to_xy. Returns (lats, lons)."""
        xy = np.asarray(xy, dtype=float).reshape(-1, 2)
        lats = self.origin_lat + np.degrees(xy[:, 1] / EARTH_RADIUS_METERS)
        lons = self.origin_lon + np.degrees(xy[:, 0] / (EARTH_RADIUS_METERS * self._cos_lat))
        return lats, lons
