"""
RouteWatch MQTT Communication Package
=====================================

Bounded Context: Communication Protocol for Route Deviation Tracking

This package provides MQTT-based messaging between the person's device
(location samples, feedback cues), the tracking service and the caregiver
app (status notifications, guidance).

Architecture:
- schemas/: Immutable data structures with type safety
- publishers/: Message producers (status, guidance, cues)
- subscriber.py: Message consumer (locations, statuses)
- logging/: Structured JSON logging for observability

Design Philosophy:
- Cohesion > Location: Each module has one reason to change
- Type Safety: Leverage Python typing for correctness
- Immutability: Use frozen dataclasses for message DTOs
- Observability: Structured logs (JSON) for production queries

Public API
----------
Schemas:
    Coordinate, Timestamp
    LocationMessage
    DeviationStatus, TurnHint, CueType
    DeviationStatusMessage, GuidanceMessage, FeedbackCueMessage

Publishers:
    DeviationStatusPublisher, GuidancePublisher, FeedbackCuePublisher
    BasePublisher (for custom publishers)

Subscriber:
    MessageSubscriber

Logging:
    LogEvent, StructuredLogger, create_logger

Example (Caregiver side):
    >>> from routewatch_mqtt import MessageSubscriber, create_logger
    >>>
    >>> def on_status(msg):
    ...     print(msg.person_id, msg.status.value, msg.last_location)
    >>>
    >>> subscriber = MessageSubscriber(
    ...     broker_host="localhost",
    ...     location_topic="routewatch/data/locations/+",
    ...     on_location=lambda msg: None,
    ...     status_topic="routewatch/data/status/+",
    ...     on_status=on_status,
    ...     logger=create_logger("caregiver"),
    ... )
    >>> subscriber.connect()
    >>> subscriber.start()
"""

# Version
__version__ = "1.0.0"

# Schemas
from .schemas import (
    Coordinate,
    Timestamp,
    LocationMessage,
    DeviationStatus,
    TurnHint,
    CueType,
    DeviationStatusMessage,
    GuidanceMessage,
    FeedbackCueMessage,
)

# Publishers
from .publishers import (
    BasePublisher,
    DeviationStatusPublisher,
    GuidancePublisher,
    FeedbackCuePublisher,
)

# Subscriber
from .subscriber import MessageSubscriber, person_id_from_topic

# Logging
from .logging import (
    LogEvent,
    StructuredLogger,
    create_logger,
)

__all__ = [
    # Version
    '__version__',
    # Schemas - Common
    'Coordinate',
    'Timestamp',
    # Schemas - Location
    'LocationMessage',
    # Schemas - Deviation
    'DeviationStatus',
    'TurnHint',
    'CueType',
    'DeviationStatusMessage',
    'GuidanceMessage',
    'FeedbackCueMessage',
    # Publishers
    'BasePublisher',
    'DeviationStatusPublisher',
    'GuidancePublisher',
    'FeedbackCuePublisher',
    # Subscriber
    'MessageSubscriber',
    'person_id_from_topic',
    # Logging
    'LogEvent',
    'StructuredLogger',
    'create_logger',
]
