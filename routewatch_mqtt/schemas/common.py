"""
Common Schema Types
==================

Bounded Context: Shared Data Structures

Value types shared by the location and deviation messages. Both are
frozen and validate in __post_init__, so an instance is always well formed.

Types:
- Coordinate: WGS84 latitude/longitude pair
- Timestamp: ISO 8601 timestamp wrapper (UTC)
"""

import math
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Dict


@dataclass(frozen=True)
class Coordinate:
    """
    Immutable WGS84 coordinate.

    Attributes:
        latitude: Decimal degrees, [-90, 90]
        longitude: Decimal degrees, [-180, 180]

    Example:
        >>> coord = Coordinate(latitude=40.4168, longitude=-3.7038)
        >>> coord.to_dict()
        {'latitude': 40.4168, 'longitude': -3.7038}
    """
    latitude: float
    longitude: float

    def __post_init__(self):
        """Validate invariants."""
        if not math.isfinite(self.latitude) or not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude must be in [-90, 90], got {self.latitude}")
        if not math.isfinite(self.longitude) or not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude must be in [-180, 180], got {self.longitude}")

    def to_dict(self) -> Dict[str, float]:
        """Serialize to JSON-compatible dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> 'Coordinate':
        """Deserialize from dict.

        Args:
            data: Dictionary with keys: latitude, longitude

        Returns:
            Coordinate instance

        Raises:
            ValueError: If required keys missing or invalid values
        """
        try:
            return cls(
                latitude=float(data['latitude']),
                longitude=float(data['longitude']),
            )
        except KeyError as e:
            raise ValueError(f"Missing required Coordinate field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid Coordinate data: {e}")


@dataclass(frozen=True)
class Timestamp:
    """
    Wall-clock time a message was produced, as a UTC ISO 8601 string.

    Distinct from the millisecond sample clock (timestamp_ms /
    event_timestamp_ms) that drives deviation timing.
    """
    value: str

    def __post_init__(self):
        if not isinstance(self.value, str) or not self.value:
            raise ValueError(f"Timestamp must be a non-empty ISO string, got {self.value!r}")

    @classmethod
    def now(cls) -> 'Timestamp':
        return cls(value=datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_epoch_ms(cls, epoch_ms: int) -> 'Timestamp':
        """Sample-clock milliseconds to a UTC timestamp."""
        return cls(value=datetime.fromtimestamp(epoch_ms / 1000.0, tz=timezone.utc).isoformat())

    def to_datetime(self) -> datetime:
        """Parsed value. ValueError if it is not ISO 8601."""
        try:
            return datetime.fromisoformat(self.value)
        except ValueError as e:
            raise ValueError(f"Invalid ISO timestamp: {self.value}") from e

    def to_dict(self) -> str:
        # Serialized inline, as a bare string
        return self.value
