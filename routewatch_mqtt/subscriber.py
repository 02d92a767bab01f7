"""
MQTT Subscriber
==============

Bounded Context: Message Consumption

Consumes location samples (tracker side) and, optionally, deviation status
messages (caregiver side). Both subscriptions are wildcard filters whose
last level is the person id, e.g. routewatch/data/locations/+.

Each incoming message goes through the same three steps:
    JSON decode → schema from_dict → user callback

A message that fails either of the first two steps is counted as rejected
and logged; it never reaches the callback. Exceptions raised by the callback
itself are logged and swallowed so the paho network thread keeps running.

Example (Tracker):
    >>> subscriber = MessageSubscriber(
    ...     broker_host="localhost",
    ...     location_topic="routewatch/data/locations/+",
    ...     on_location=service.handle_location,
    ...     logger=create_logger("location_subscriber"),
    ... )
    >>> subscriber.connect()
    >>> subscriber.start()
"""

import json
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import paho.mqtt.client as mqtt

from .schemas import LocationMessage, DeviationStatusMessage
from .logging import StructuredLogger, LogEvent


def person_id_from_topic(topic: str) -> str:
    """Last topic level, e.g. routewatch/data/locations/grandma -> grandma."""
    return topic.rstrip('/').rsplit('/', 1)[-1]


@dataclass(frozen=True)
class _Route:
    topic_filter: str
    kind: str
    decode: Callable[[Dict[str, Any], str], Any]
    callback: Optional[Callable[[Any], None]]


def _decode_location(data: Dict[str, Any], topic: str) -> LocationMessage:
    return LocationMessage.from_dict(data, person_id=person_id_from_topic(topic))


def _decode_status(data: Dict[str, Any], topic: str) -> DeviationStatusMessage:
    return DeviationStatusMessage.from_dict(data)


class MessageSubscriber:
    """
    Typed MQTT consumer for LocationMessage and DeviationStatusMessage.

    Callbacks run on paho's network thread. The tracking service only
    enqueues there; do the same in any other consumer.
    """

    def __init__(
        self,
        broker_host: str,
        location_topic: str,
        on_location: Callable[[LocationMessage], None],
        logger: StructuredLogger,
        status_topic: Optional[str] = None,
        on_status: Optional[Callable[[DeviationStatusMessage], None]] = None,
        broker_port: int = 1883,
        client_id: str = "routewatch_subscriber",
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 0
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.location_topic = location_topic
        self.status_topic = status_topic
        self.client_id = client_id
        self.logger = logger
        self.qos = qos

        self._routes: List[_Route] = [
            _Route(location_topic, 'locations', _decode_location, on_location),
        ]
        if status_topic:
            self._routes.append(_Route(status_topic, 'statuses', _decode_status, on_status))

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        if username and password:
            self.client.username_pw_set(username, password)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

        self._connected = threading.Event()
        self._running = False
        self._stats_lock = threading.Lock()
        self._counts = Counter()

    @property
    def broker(self) -> str:
        return f"{self.broker_host}:{self.broker_port}"

    # ===== paho callbacks =====

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=f"Broker refused connection (reason={reason_code})",
                metadata={'broker': self.broker}
            )
            return

        # Subscriptions are renewed on every (re)connect
        for route in self._routes:
            client.subscribe(route.topic_filter, qos=self.qos)
        self._connected.set()
        self.logger.info(
            event=LogEvent.MQTT_CONNECTED,
            message="Subscribed",
            metadata={'broker': self.broker, 'topics': [r.topic_filter for r in self._routes]}
        )

    def _on_disconnect(self, client, userdata, flags, reason_code, properties) -> None:
        self._connected.clear()
        self.logger.warning(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Subscriber disconnected",
            metadata={'broker': self.broker, 'reason_code': str(reason_code)}
        )

    def _on_message(self, client, userdata, msg) -> None:
        route = next(
            (r for r in self._routes if mqtt.topic_matches_sub(r.topic_filter, msg.topic)),
            None,
        )
        if route is None:
            self.logger.warning(
                event=LogEvent.DESERIALIZATION_ERROR,
                message="Message on a topic we did not subscribe to",
                metadata={'topic': msg.topic}
            )
            return

        try:
            data = json.loads(msg.payload.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self._reject(msg.topic, LogEvent.DESERIALIZATION_ERROR, "Payload is not JSON", e)
            return

        if not isinstance(data, dict):
            self._reject(
                msg.topic, LogEvent.SCHEMA_VALIDATION_ERROR, "Payload is not a JSON object",
                ValueError(type(data).__name__)
            )
            return

        try:
            message = route.decode(data, msg.topic)
        except ValueError as e:
            self._reject(msg.topic, LogEvent.SCHEMA_VALIDATION_ERROR, f"Invalid {route.kind} message", e)
            return

        self._bump(route.kind)
        self._log_received(route.kind, message)

        if route.callback is None:
            return
        try:
            route.callback(message)
        except Exception as e:
            self.logger.error(
                event=LogEvent.DESERIALIZATION_ERROR,
                message=f"{route.kind} callback raised",
                exc_info=e,
                metadata={'topic': msg.topic}
            )

    def _log_received(self, kind: str, message: Any) -> None:
        if kind == 'locations':
            self.logger.debug(
                event=LogEvent.LOCATION_RECEIVED,
                message="Location sample",
                metadata={'person_id': message.person_id, 'timestamp': message.timestamp_ms}
            )
        else:
            self.logger.info(
                event=LogEvent.DEVIATION_STATUS_RECEIVED,
                message=f"Status {message.status.value}",
                metadata={'person_id': message.person_id}
            )

    def _reject(self, topic: str, event: LogEvent, message: str, error: Exception) -> None:
        self._bump('rejected')
        self.logger.error(event=event, message=message, exc_info=error, metadata={'topic': topic})

    def _bump(self, key: str) -> None:
        with self._stats_lock:
            self._counts[key] += 1

    # ===== Lifecycle =====

    def connect(self, timeout: float = 10.0) -> bool:
        """Start the network loop and wait until subscribed. False on failure."""
        try:
            self.client.connect(self.broker_host, self.broker_port)
        except (OSError, ValueError) as e:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message="Cannot reach broker",
                exc_info=e,
                metadata={'broker': self.broker}
            )
            return False

        self.client.loop_start()
        if self._connected.wait(timeout=timeout):
            return True

        self.logger.error(
            event=LogEvent.MQTT_CONNECTION_ERROR,
            message=f"No CONNACK within {timeout}s",
            metadata={'broker': self.broker}
        )
        return False

    def start(self) -> None:
        """Mark the subscriber as listening. Messages flow once connected."""
        if not self._connected.is_set():
            self.logger.warning(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message="start() called before connect() succeeded"
            )
            return
        self._running = True

    def stop(self) -> None:
        self._running = False
        self.client.loop_stop()
        self.client.disconnect()
        self.logger.info(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Subscriber stopped",
            metadata=self.get_stats()
        )

    def is_connected(self) -> bool:
        return self._connected.is_set()

    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            return {
                'locations_received': self._counts['locations'],
                'statuses_received': self._counts['statuses'],
                'messages_rejected': self._counts['rejected'],
                'connected': self._connected.is_set(),
                'running': self._running,
                'topics': [r.topic_filter for r in self._routes],
                'broker': self.broker,
            }
