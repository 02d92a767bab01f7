"""
Test MQTT Pub/Sub (Without Real Broker)
========================================

This script tests the publish/subscribe flow without requiring a real
MQTT broker, by simulating message passing.

Usage:
    pytest test_mqtt_pubsub.py -v
    python test_mqtt_pubsub.py
"""

import io
import json

import pytest

from routewatch_mqtt import (
    DeviationStatusPublisher,
    FeedbackCuePublisher,
    GuidancePublisher,
    MessageSubscriber,
    create_logger,
    person_id_from_topic,
)
from routewatch_mqtt.logging import LogEvent, StructuredLogger
from routewatch_mqtt.schemas import (
    Coordinate,
    CueType,
    DeviationStatus,
    DeviationStatusMessage,
    FeedbackCueMessage,
    GuidanceMessage,
    LocationMessage,
    Timestamp,
    TurnHint,
)


class FakeMQTTMessage:
    """Stand-in for paho's MQTTMessage (topic + payload bytes)."""

    def __init__(self, topic, payload):
        self.topic = topic
        self.payload = payload if isinstance(payload, bytes) else json.dumps(payload).encode()


def test_message_serialization():
    """Test that messages can be serialized and deserialized."""
    print("\n" + "=" * 60)
    print("TEST: Message Serialization/Deserialization")
    print("=" * 60)

    logger = create_logger("test")

    # 1. Status
    status_pub = DeviationStatusPublisher(
        broker_host="localhost",
        topic_template="routewatch/data/status/{person_id}",
        logger=logger,
    )
    assert status_pub.topic_for("grandma") == "routewatch/data/status/grandma"
    print("\n✓ DeviationStatusPublisher created")

    off_route = DeviationStatusMessage(
        schema_version="1.0",
        timestamp=Timestamp.now(),
        person_id="grandma",
        status=DeviationStatus.OFF_ROUTE,
        event_timestamp_ms=1729781445123,
        last_location=Coordinate(40.4170, -3.7035),
    )
    json_str = json.dumps(status_pub.format_message(off_route))
    reconstructed = DeviationStatusMessage.from_dict(json.loads(json_str))
    assert reconstructed == off_route
    assert reconstructed.is_off_route
    print(f"✓ Status message survives JSON ({len(json_str)} bytes)")

    on_route = DeviationStatusMessage(
        schema_version="1.0",
        timestamp=Timestamp.now(),
        person_id="grandma",
        status=DeviationStatus.ON_ROUTE,
        event_timestamp_ms=1729781449000,
    )
    data = status_pub.format_message(on_route)
    assert data["last_location"] is None
    assert data["status"] == "on-route"

    # 2. Guidance
    guidance_pub = GuidancePublisher(
        broker_host="localhost",
        topic_template="routewatch/data/guidance/{person_id}",
        logger=logger,
    )
    guidance = GuidanceMessage(
        schema_version="1.0",
        timestamp=Timestamp.now(),
        person_id="grandma",
        steps_to_target=19,
        turn_direction=TurnHint.LEFT,
        distance_m=11.12,
        nearest_point=Coordinate(40.4168, -3.7035),
    )
    restored = GuidanceMessage.from_dict(json.loads(json.dumps(guidance_pub.format_message(guidance))))
    assert restored == guidance
    assert not restored.is_calculating

    calculating = GuidanceMessage(schema_version="1.0", timestamp=Timestamp.now(), person_id="grandma")
    data = guidance_pub.format_message(calculating)
    assert data["steps_to_target"] is None and data["turn_direction"] is None
    assert GuidanceMessage.from_dict(data).is_calculating
    print("✓ Guidance messages work (including 'calculating')")

    # 3. Cues
    cue_pub = FeedbackCuePublisher(
        broker_host="localhost",
        topic_template="routewatch/data/cues/{person_id}",
        logger=logger,
    )
    alarm = FeedbackCueMessage(
        schema_version="1.0",
        timestamp=Timestamp.now(),
        person_id="grandma",
        cue_type=CueType.ALARM,
        sequence=1,
    )
    directional = FeedbackCueMessage(
        schema_version="1.0",
        timestamp=Timestamp.now(),
        person_id="grandma",
        cue_type=CueType.DIRECTIONAL,
        sequence=2,
        turn_direction=TurnHint.RIGHT,
        steps_to_target=12,
    )
    alarm_data = cue_pub.format_message(alarm)
    assert "turn_direction" not in alarm_data
    assert FeedbackCueMessage.from_dict(alarm_data) == alarm
    assert FeedbackCueMessage.from_dict(cue_pub.format_message(directional)) == directional
    print("✓ Cue messages work")

    print("\n" + "=" * 60)
    print("✅ ALL SERIALIZATION TESTS PASSED")
    print("=" * 60)


def test_schema_invariants():
    with pytest.raises(ValueError):
        DeviationStatusMessage(
            schema_version="1.0",
            timestamp=Timestamp.now(),
            person_id="grandma",
            status=DeviationStatus.ON_ROUTE,
            event_timestamp_ms=0,
            last_location=Coordinate(0.0, 0.0),
        )
    with pytest.raises(ValueError):
        FeedbackCueMessage(
            schema_version="1.0",
            timestamp=Timestamp.now(),
            person_id="grandma",
            cue_type=CueType.DIRECTIONAL,
            sequence=1,
        )
    with pytest.raises(ValueError):
        Coordinate(91.0, 0.0)
    with pytest.raises(ValueError):
        LocationMessage.from_dict({"latitude": 0.0, "longitude": 0.0}, person_id="grandma")
    with pytest.raises(ValueError):
        DeviationStatusMessage.from_dict({"status": "lost"})


def test_location_message_defaults():
    msg = LocationMessage.from_dict(
        {"latitude": 40.4168, "longitude": -3.7038, "timestamp": 1729781445123},
        person_id="grandma",
    )

    assert msg.person_id == "grandma"
    assert msg.schema_version == "1.0"
    assert msg.heading == 0.0

    sample = msg.to_position()
    assert sample.timestamp_ms == 1729781445123
    assert sample.location.latitude == 40.4168
    assert msg.to_dict()["timestamp"] == 1729781445123


def test_topic_person_id_wins():
    same = LocationMessage.from_dict(
        {"person_id": "grandma", "latitude": 0.0, "longitude": 0.0, "timestamp": 1},
        person_id="grandma",
    )
    assert same.person_id == "grandma"

    with pytest.raises(ValueError):
        LocationMessage.from_dict(
            {"person_id": "grandma", "latitude": 0.0, "longitude": 0.0, "timestamp": 1},
            person_id="grandpa",
        )

    received = []
    subscriber = MessageSubscriber(
        broker_host="localhost",
        location_topic="routewatch/data/locations/+",
        on_location=received.append,
        logger=create_logger("test"),
    )
    subscriber._on_message(None, None, FakeMQTTMessage(
        "routewatch/data/locations/grandpa",
        {"person_id": "grandma", "latitude": 0.0, "longitude": 0.0, "timestamp": 1},
    ))

    assert received == []
    assert subscriber.get_stats()["messages_rejected"] == 1


def test_timestamp_helpers():
    ts = Timestamp.from_epoch_ms(0)
    assert ts.to_datetime().year == 1970
    assert ts.to_datetime().utcoffset().total_seconds() == 0
    with pytest.raises(ValueError):
        Timestamp("yesterday").to_datetime()
    with pytest.raises(ValueError):
        Timestamp("")


def test_subscriber_callbacks():
    """Test subscriber callback invocation (simulated)."""
    print("\n" + "=" * 60)
    print("TEST: Subscriber Callbacks")
    print("=" * 60)

    logger = create_logger("test")
    received_locations = []
    received_statuses = []

    subscriber = MessageSubscriber(
        broker_host="localhost",
        location_topic="routewatch/data/locations/+",
        status_topic="routewatch/data/status/+",
        on_location=received_locations.append,
        on_status=received_statuses.append,
        logger=logger,
    )
    print("✓ MessageSubscriber created with callbacks")

    # Person id comes from the topic when the payload omits it
    subscriber._on_message(None, None, FakeMQTTMessage(
        "routewatch/data/locations/grandma",
        {"latitude": 40.4168, "longitude": -3.7038, "heading": 90, "timestamp": 1000},
    ))

    status = DeviationStatusMessage(
        schema_version="1.0",
        timestamp=Timestamp.now(),
        person_id="grandma",
        status=DeviationStatus.OFF_ROUTE,
        event_timestamp_ms=6000,
        last_location=Coordinate(40.4170, -3.7035),
    )
    subscriber._on_message(None, None, FakeMQTTMessage(
        "routewatch/data/status/grandma", status.to_dict()
    ))

    # Rejected: bad JSON, schema violation, unknown topic
    subscriber._on_message(None, None, FakeMQTTMessage(
        "routewatch/data/locations/grandma", b"{not json"
    ))
    subscriber._on_message(None, None, FakeMQTTMessage(
        "routewatch/data/locations/grandma", {"latitude": 123.0, "longitude": 0.0, "timestamp": 1}
    ))
    subscriber._on_message(None, None, FakeMQTTMessage("elsewhere/topic", {}))

    assert len(received_locations) == 1
    assert received_locations[0].person_id == "grandma"
    assert received_locations[0].heading == 90.0
    assert received_statuses == [status]
    print("✓ Callbacks invoked correctly")

    stats = subscriber.get_stats()
    assert stats["locations_received"] == 1
    assert stats["statuses_received"] == 1
    assert stats["messages_rejected"] == 2
    print(f"✓ Subscriber stats: {stats['locations_received']} locations, "
          f"{stats['messages_rejected']} rejected")


def test_callback_errors_do_not_escape():
    def broken(msg):
        raise RuntimeError("downstream failure")

    subscriber = MessageSubscriber(
        broker_host="localhost",
        location_topic="routewatch/data/locations/+",
        on_location=broken,
        logger=create_logger("test"),
    )
    subscriber._on_message(None, None, FakeMQTTMessage(
        "routewatch/data/locations/grandma",
        {"latitude": 0.0, "longitude": 0.0, "timestamp": 1},
    ))
    assert subscriber.get_stats()["locations_received"] == 1


def test_publish_without_connection_fails_softly():
    publisher = GuidancePublisher(
        broker_host="localhost",
        topic_template="routewatch/data/guidance/{person_id}",
        logger=create_logger("test"),
    )
    msg = GuidanceMessage(schema_version="1.0", timestamp=Timestamp.now(), person_id="grandma")

    assert publisher.publish_guidance(msg) is False
    assert publisher.is_connected() is False
    assert publisher.get_stats()["dropped"] == 1


def test_person_id_from_topic():
    assert person_id_from_topic("routewatch/data/locations/grandma") == "grandma"
    assert person_id_from_topic("routewatch/data/locations/grandma/") == "grandma"


def test_structured_log_line():
    stream = io.StringIO()
    log = StructuredLogger("log_line_test", logger_name="routewatch_mqtt.tests.log_line")
    handler = log.logger.handlers[0]
    handler.setStream(stream)

    log.info(LogEvent.LOCATION_RECEIVED, "Location received", metadata={"person_id": "grandma"})
    log.debug(LogEvent.MQTT_PUBLISH_SUCCESS, "below level, not written")
    log.error(LogEvent.SCHEMA_VALIDATION_ERROR, "Invalid sample", exc_info=ValueError("latitude"))

    lines = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert len(lines) == 2

    assert lines[0]["event"] == "location.received"
    assert lines[0]["category"] == "location"
    assert lines[0]["component"] == "log_line_test"
    assert lines[0]["metadata"] == {"person_id": "grandma"}
    assert lines[0]["level"] == "INFO"

    assert lines[1]["exception"] == {"type": "ValueError", "message": "latitude"}
    assert LogEvent.SCHEMA_VALIDATION_ERROR.is_error
    assert not LogEvent.CUE_PUBLISHED.is_error


def main():
    """Run all tests."""
    print("\n🧭 routewatch_mqtt - Pub/Sub Integration Tests")
    print("=" * 60)
    print("Testing without real MQTT broker (simulated)")
    print("=" * 60)

    test_message_serialization()
    test_subscriber_callbacks()

    print("\n" + "=" * 60)
    print("✅ ALL TESTS PASSED!")
    print("=" * 60)


if __name__ == "__main__":
    main()
