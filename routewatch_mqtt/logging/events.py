"""
Log Event Names
===============

Bounded Context: Observability

Every structured log line carries one of these names in its "event" field,
so dashboards can filter on a fixed vocabulary instead of free text.

Names are dotted: the first segment is the area the event belongs to
(mqtt, location, deviation, guidance, cue, error) and is exposed as
LogEvent.category.

Example query (Loki):
    {app="routewatch"} | json | event="deviation.status.published"
"""

from enum import Enum


class LogEvent(str, Enum):
    """Typed event names for StructuredLogger."""

    # broker link
    MQTT_CONNECTED = "mqtt.connected"
    MQTT_DISCONNECTED = "mqtt.disconnected"
    MQTT_PUBLISH_SUCCESS = "mqtt.publish.success"
    MQTT_PUBLISH_FAILED = "mqtt.publish.failed"

    # inbound
    LOCATION_RECEIVED = "location.received"
    DEVIATION_STATUS_RECEIVED = "deviation.status.received"

    # outbound, one per output topic
    DEVIATION_STATUS_PUBLISHED = "deviation.status.published"
    GUIDANCE_PUBLISHED = "guidance.published"
    CUE_PUBLISHED = "cue.published"

    # failures
    SERIALIZATION_ERROR = "error.serialization"
    DESERIALIZATION_ERROR = "error.deserialization"
    SCHEMA_VALIDATION_ERROR = "error.schema_validation"
    MQTT_CONNECTION_ERROR = "error.mqtt_connection"
    MQTT_PUBLISH_ERROR = "error.mqtt_publish"

    @property
    def category(self) -> str:
        """First segment of the dotted name (e.g. "mqtt", "error")."""
        return self.value.split(".", 1)[0]

    @property
    def is_error(self) -> bool:
        return self.category == "error"
