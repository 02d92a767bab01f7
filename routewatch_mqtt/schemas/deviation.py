"""
Deviation Message Schema
========================

Bounded Context: Outbound Deviation Data

Messages published when a session changes status, when guidance changes,
and for every feedback cue.

Design:
- DeviationStatusMessage: Caregiver notification (on-route / off-route)
- GuidanceMessage: Steps + turn direction (null fields = calculating)
- FeedbackCueMessage: One alarm or directional cue

Message Flow:
    DeviationStateMachine → StatusChange → DeviationStatusPublisher → MQTT → Caregiver app
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .common import Coordinate, Timestamp


class DeviationStatus(str, Enum):
    """Caregiver-facing status."""
    ON_ROUTE = "on-route"
    OFF_ROUTE = "off-route"


class TurnHint(str, Enum):
    """Turn direction on the wire."""
    LEFT = "left"
    RIGHT = "right"
    STRAIGHT = "straight"


class CueType(str, Enum):
    """Feedback cue type."""
    ALARM = "alarm"
    DIRECTIONAL = "directional"


@dataclass(frozen=True)
class DeviationStatusMessage:
    """
    Status change notification.

    Attributes:
        schema_version: Message schema version
        timestamp: Message creation time
        person_id: Tracked person
        status: on-route | off-route
        event_timestamp_ms: Timestamp of the sample that caused the change
        last_location: Last known position (off-route only)

    Invariants:
        - last_location is None for on-route

    Example:
        >>> msg = DeviationStatusMessage(
        ...     schema_version="1.0",
        ...     timestamp=Timestamp.now(),
        ...     person_id="grandma",
        ...     status=DeviationStatus.OFF_ROUTE,
        ...     event_timestamp_ms=1729781445123,
        ...     last_location=Coordinate(40.4168, -3.7038),
        ... )
    """
    schema_version: str
    timestamp: Timestamp
    person_id: str
    status: DeviationStatus
    event_timestamp_ms: int
    last_location: Optional[Coordinate] = None

    def __post_init__(self):
        """Validate invariants."""
        if self.status == DeviationStatus.ON_ROUTE and self.last_location is not None:
            raise ValueError("on-route status must not carry last_location")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            'schema_version': self.schema_version,
            'timestamp': self.timestamp.to_dict(),
            'person_id': self.person_id,
            'status': self.status.value,
            'event_timestamp': self.event_timestamp_ms,
            'last_location': self.last_location.to_dict() if self.last_location else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeviationStatusMessage':
        """Deserialize from dict.

        Raises:
            ValueError: If required fields missing or invalid
        """
        try:
            last_location = None
            if data.get('last_location') is not None:
                last_location = Coordinate.from_dict(data['last_location'])

            return cls(
                schema_version=str(data['schema_version']),
                timestamp=Timestamp(value=data['timestamp']),
                person_id=str(data['person_id']),
                status=DeviationStatus(data['status']),
                event_timestamp_ms=int(data['event_timestamp']),
                last_location=last_location,
            )
        except KeyError as e:
            raise ValueError(f"Missing required DeviationStatusMessage field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid DeviationStatusMessage data: {e}")

    @property
    def is_off_route(self) -> bool:
        return self.status == DeviationStatus.OFF_ROUTE


@dataclass(frozen=True)
class GuidanceMessage:
    """
    Return guidance update.

    steps_to_target / turn_direction are None while guidance is not available
    (and after the person is back on route).

    Attributes:
        schema_version: Message schema version
        timestamp: Message creation time
        person_id: Tracked person
        steps_to_target: Non-negative step count
        turn_direction: left | right | straight
        distance_m: Distance to nearest route point
        nearest_point: Nearest route point (end of the guidance line)
    """
    schema_version: str
    timestamp: Timestamp
    person_id: str
    steps_to_target: Optional[int] = None
    turn_direction: Optional[TurnHint] = None
    distance_m: Optional[float] = None
    nearest_point: Optional[Coordinate] = None

    def __post_init__(self):
        """Validate invariants."""
        if self.steps_to_target is not None and self.steps_to_target < 0:
            raise ValueError(f"steps_to_target must be >= 0, got {self.steps_to_target}")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            'schema_version': self.schema_version,
            'timestamp': self.timestamp.to_dict(),
            'person_id': self.person_id,
            'steps_to_target': self.steps_to_target,
            'turn_direction': self.turn_direction.value if self.turn_direction else None,
            'distance_m': self.distance_m,
            'nearest_point': self.nearest_point.to_dict() if self.nearest_point else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GuidanceMessage':
        """Deserialize from dict.

        Raises:
            ValueError: If required fields missing or invalid
        """
        try:
            turn = data.get('turn_direction')
            nearest = data.get('nearest_point')
            steps = data.get('steps_to_target')
            distance = data.get('distance_m')
            return cls(
                schema_version=str(data['schema_version']),
                timestamp=Timestamp(value=data['timestamp']),
                person_id=str(data['person_id']),
                steps_to_target=int(steps) if steps is not None else None,
                turn_direction=TurnHint(turn) if turn is not None else None,
                distance_m=float(distance) if distance is not None else None,
                nearest_point=Coordinate.from_dict(nearest) if nearest is not None else None,
            )
        except KeyError as e:
            raise ValueError(f"Missing required GuidanceMessage field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid GuidanceMessage data: {e}")

    @property
    def is_calculating(self) -> bool:
        return self.steps_to_target is None or self.turn_direction is None


@dataclass(frozen=True)
class FeedbackCueMessage:
    """
    Single feedback cue for the person's device.

    Invariants:
        - Directional cues carry turn_direction and steps_to_target
    """
    schema_version: str
    timestamp: Timestamp
    person_id: str
    cue_type: CueType
    sequence: int
    turn_direction: Optional[TurnHint] = None
    steps_to_target: Optional[int] = None

    def __post_init__(self):
        """Validate invariants."""
        if self.sequence < 0:
            raise ValueError(f"sequence must be >= 0, got {self.sequence}")
        if self.cue_type == CueType.DIRECTIONAL and (
            self.turn_direction is None or self.steps_to_target is None
        ):
            raise ValueError("Directional cues require turn_direction and steps_to_target")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        result = {
            'schema_version': self.schema_version,
            'timestamp': self.timestamp.to_dict(),
            'person_id': self.person_id,
            'cue_type': self.cue_type.value,
            'sequence': self.sequence,
        }
        if self.turn_direction is not None:
            result['turn_direction'] = self.turn_direction.value
        if self.steps_to_target is not None:
            result['steps_to_target'] = self.steps_to_target
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FeedbackCueMessage':
        """Deserialize from dict.

        Raises:
            ValueError: If required fields missing or invalid
        """
        try:
            turn = data.get('turn_direction')
            steps = data.get('steps_to_target')
            return cls(
                schema_version=str(data['schema_version']),
                timestamp=Timestamp(value=data['timestamp']),
                person_id=str(data['person_id']),
                cue_type=CueType(data['cue_type']),
                sequence=int(data['sequence']),
                turn_direction=TurnHint(turn) if turn is not None else None,
                steps_to_target=int(steps) if steps is not None else None,
            )
        except KeyError as e:
            raise ValueError(f"Missing required FeedbackCueMessage field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid FeedbackCueMessage data: {e}")
