"""
MQTT Publishers
==============

Bounded Context: Message Production

This module provides publishers for sending deviation status, guidance and
feedback cue messages to the MQTT broker.

Design:
- BasePublisher: Abstract base with connection management
- PersonMessagePublisher: per-person topic, format + publish + success log
- DeviationStatusPublisher: Caregiver notifications (retained)
- GuidancePublisher: Return guidance updates
- FeedbackCuePublisher: Alarm / directional cues
- Separation of concerns: Publishers format, broker publishes

Example:
    >>> from routewatch_mqtt.publishers import GuidancePublisher
    >>> from routewatch_mqtt.logging import create_logger
    >>>
    >>> publisher = GuidancePublisher(
    ...     broker_host="localhost",
    ...     topic_template="routewatch/data/guidance/{person_id}",
    ...     logger=create_logger("guidance_publisher"),
    ... )
    >>> publisher.connect()
    >>> publisher.publish_guidance(guidance_message)
"""

from .base import BasePublisher
from .deviation import (
    PersonMessagePublisher,
    DeviationStatusPublisher,
    GuidancePublisher,
    FeedbackCuePublisher,
)

__all__ = [
    'BasePublisher',
    'PersonMessagePublisher',
    'DeviationStatusPublisher',
    'GuidancePublisher',
    'FeedbackCuePublisher',
]
