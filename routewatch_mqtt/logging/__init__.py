"""
Structured Logging for RouteWatch MQTT
======================================

Bounded Context: Observability

This module provides JSON-structured logging for production observability.

Design:
- JSON output (parseable by ELK, CloudWatch, Loki)
- Typed events (enums prevent typos)
- Contextual metadata (person_id, topic, etc.)
- Thread-safe

Public API
----------
    LogEvent: Typed event names (enum)
    StructuredLogger: JSON logger implementation
    create_logger: Factory function

Example:
    >>> from routewatch_mqtt.logging import StructuredLogger, LogEvent
    >>> logger = StructuredLogger(component="location_subscriber")
    >>> logger.info(
    ...     event=LogEvent.LOCATION_RECEIVED,
    ...     message="Location received",
    ...     metadata={'person_id': 'grandma'}
    ... )
"""

from .events import LogEvent
from .structured import StructuredLogger, create_logger

__all__ = [
    'LogEvent',
    'StructuredLogger',
    'create_logger',
]
