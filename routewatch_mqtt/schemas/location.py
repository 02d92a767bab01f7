"""
Location Message Schema
=======================

Bounded Context: Inbound Position Data

Position samples reported by the tracked person's device.

Message Flow:
    Device GPS → LocationMessage → MQTT → LocationSubscriber → DeviationTrackingService
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from routewatch_zone.geometry.shapes import PositionSample


@dataclass(frozen=True)
class LocationMessage:
    """
    Single position sample on the wire.

    Attributes:
        schema_version: Message schema version
        person_id: Tracked person (also carried in the topic)
        latitude: Decimal degrees
        longitude: Decimal degrees
        heading: Degrees clockwise from north (device compass)
        timestamp_ms: Sample time, ms since epoch

    Example:
        >>> msg = LocationMessage(
        ...     schema_version="1.0",
        ...     person_id="grandma",
        ...     latitude=40.4168,
        ...     longitude=-3.7038,
        ...     heading=90.0,
        ...     timestamp_ms=1729781445123,
        ... )
    """
    schema_version: str
    person_id: str
    latitude: float
    longitude: float
    heading: float
    timestamp_ms: int

    def __post_init__(self):
        """Validate invariants."""
        if not self.person_id:
            raise ValueError("person_id must not be empty")
        if not math.isfinite(self.latitude) or not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Latitude must be in [-90, 90], got {self.latitude}")
        if not math.isfinite(self.longitude) or not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Longitude must be in [-180, 180], got {self.longitude}")
        if not math.isfinite(self.heading):
            raise ValueError(f"Heading must be finite, got {self.heading}")
        if self.timestamp_ms < 0:
            raise ValueError(f"timestamp_ms must be >= 0, got {self.timestamp_ms}")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            'schema_version': self.schema_version,
            'person_id': self.person_id,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'heading': self.heading,
            'timestamp': self.timestamp_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], person_id: Optional[str] = None) -> 'LocationMessage':
        """Deserialize from dict.

        Args:
            data: Dictionary with message fields
            person_id: Person id from the topic. It is authoritative: a payload
                person_id that disagrees with it is rejected.

        Returns:
            LocationMessage instance

        Raises:
            ValueError: If required fields missing or invalid
        """
        claimed = data.get('person_id')
        if person_id and claimed and str(claimed) != person_id:
            raise ValueError(
                f"Payload person_id '{claimed}' does not match topic person '{person_id}'"
            )

        try:
            return cls(
                schema_version=str(data.get('schema_version', '1.0')),
                person_id=str(person_id or claimed or ''),
                latitude=float(data['latitude']),
                longitude=float(data['longitude']),
                heading=float(data.get('heading') or 0.0),
                timestamp_ms=int(data['timestamp']),
            )
        except KeyError as e:
            raise ValueError(f"Missing required LocationMessage field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid LocationMessage data: {e}")

    def to_position(self) -> PositionSample:
        """Convert to the engine's PositionSample."""
        return PositionSample(
            latitude=self.latitude,
            longitude=self.longitude,
            heading=self.heading,
            timestamp_ms=self.timestamp_ms,
        )
