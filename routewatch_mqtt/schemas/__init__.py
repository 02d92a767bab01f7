"""
RouteWatch MQTT Schemas
=======================

Bounded Context: Data Structures

This module defines immutable, typed data structures for MQTT messages.

Design:
- Frozen dataclasses (immutability)
- Type hints for all fields (mypy compatible)
- to_dict() for JSON serialization
- from_dict() for deserialization
- Schema versioning for evolution

Public API
----------
Common Types:
    Coordinate: WGS84 coordinate with validation
    Timestamp: ISO 8601 timestamp wrapper

Location Types:
    LocationMessage: Position sample from the person's device

Deviation Types:
    DeviationStatus: Enum (ON_ROUTE, OFF_ROUTE)
    TurnHint: Enum (LEFT, RIGHT, STRAIGHT)
    CueType: Enum (ALARM, DIRECTIONAL)
    DeviationStatusMessage: Caregiver notification
    GuidanceMessage: Return guidance update
    FeedbackCueMessage: Alarm / directional cue

Example:
    >>> from routewatch_mqtt.schemas import LocationMessage
    >>> msg = LocationMessage.from_dict(
    ...     {"latitude": 40.4, "longitude": -3.7, "heading": 90, "timestamp": 0},
    ...     person_id="grandma",
    ... )
"""

from .common import Coordinate, Timestamp
from .location import LocationMessage
from .deviation import (
    DeviationStatus,
    TurnHint,
    CueType,
    DeviationStatusMessage,
    GuidanceMessage,
    FeedbackCueMessage,
)

__all__ = [
    # Common types
    'Coordinate',
    'Timestamp',
    # Location types
    'LocationMessage',
    # Deviation types
    'DeviationStatus',
    'TurnHint',
    'CueType',
    'DeviationStatusMessage',
    'GuidanceMessage',
    'FeedbackCueMessage',
]
