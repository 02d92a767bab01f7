"""
Base MQTT Publisher
==================

Bounded Context: MQTT Infrastructure

Shared connection handling for the per-person output publishers.

Design:
- One paho client per publisher (VERSION2 callbacks, loop_start thread)
- Topic template with a {person_id} placeholder, resolved per message
- Never raises on publish: returns False and logs (callers are fire-and-forget)
- Counters per person and for dropped messages (get_stats)

Architecture:
    BasePublisher (abstract: format_message)
        ↓
    DeviationStatusPublisher, GuidancePublisher, FeedbackCuePublisher
"""

import json
import threading
from abc import ABC, abstractmethod
from collections import Counter
from typing import Dict, Any, Optional
import paho.mqtt.client as mqtt

from ..logging import StructuredLogger, LogEvent


class BasePublisher(ABC):
    """
    Abstract MQTT publisher.

    Subclasses turn one message dataclass into a dict (format_message) and
    call publish() with the person's topic.

    Thread Safety:
        publish() may be called from any thread; counters are lock-guarded.
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int,
        topic_template: str,
        client_id: str,
        logger: StructuredLogger,
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 0
    ):
        if qos not in (0, 1, 2):
            raise ValueError(f"qos must be 0, 1 or 2, got {qos}")

        self.broker_host = broker_host
        self.broker_port = broker_port
        self.topic_template = topic_template
        self.client_id = client_id
        self.logger = logger
        self.qos = qos

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        if username and password:
            self.client.username_pw_set(username, password)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

        self._connected = threading.Event()
        self._stats_lock = threading.Lock()
        self._published = Counter()
        self._dropped = 0

    @property
    def broker(self) -> str:
        return f"{self.broker_host}:{self.broker_port}"

    def topic_for(self, person_id: str) -> str:
        """Resolve the topic template for one person."""
        return self.topic_template.format(person_id=person_id)

    # ===== paho callbacks =====

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=f"Broker refused connection (reason={reason_code})",
                metadata={'broker': self.broker, 'client_id': self.client_id}
            )
            return

        self._connected.set()
        self.logger.info(
            event=LogEvent.MQTT_CONNECTED,
            message="Publisher connected",
            metadata={'broker': self.broker, 'topic_template': self.topic_template}
        )

    def _on_disconnect(self, client, userdata, flags, reason_code, properties) -> None:
        self._connected.clear()
        self.logger.warning(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Publisher disconnected",
            metadata={'broker': self.broker, 'reason_code': str(reason_code)}
        )

    # ===== Lifecycle =====

    def connect(self, timeout: float = 10.0) -> bool:
        """Start the network loop and wait for the broker. False on failure."""
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

    def disconnect(self) -> None:
        self.client.loop_stop()
        self.client.disconnect()
        self._connected.clear()
        self.logger.info(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Publisher stopped",
            metadata=self.get_stats()
        )

    def is_connected(self) -> bool:
        return self._connected.is_set()

    # ===== Publishing =====

    @abstractmethod
    def format_message(self, *args, **kwargs) -> Dict[str, Any]:
        """Return the JSON-ready dict for one message."""
        raise NotImplementedError("Subclasses must implement format_message()")

    def publish(
        self,
        message_data: Dict[str, Any],
        topic: Optional[str] = None,
        retain: bool = False
    ) -> bool:
        """
        Publish an already formatted message.

        Args:
            message_data: Output of format_message()
            topic: Concrete topic (default: the template as-is)
            retain: MQTT retain flag

        Returns:
            True if handed to the client, False if dropped
        """
        topic = topic or self.topic_template

        if not self._connected.is_set():
            self._drop(topic, "not connected to broker")
            return False

        try:
            payload = json.dumps(message_data)
        except (TypeError, ValueError) as e:
            self.logger.error(
                event=LogEvent.SERIALIZATION_ERROR,
                message="Message is not JSON serializable",
                exc_info=e,
                metadata={'topic': topic}
            )
            self._drop(topic, "serialization")
            return False

        result = self.client.publish(topic=topic, payload=payload, qos=self.qos, retain=retain)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self._drop(topic, f"rc={result.rc}")
            return False

        with self._stats_lock:
            self._published[topic] += 1
        self.logger.debug(
            event=LogEvent.MQTT_PUBLISH_SUCCESS,
            message="Published",
            metadata={'topic': topic, 'qos': self.qos, 'retain': retain}
        )
        return True

    def _drop(self, topic: str, reason: str) -> None:
        with self._stats_lock:
            self._dropped += 1
        self.logger.warning(
            event=LogEvent.MQTT_PUBLISH_FAILED,
            message=f"Message dropped ({reason})",
            metadata={'topic': topic}
        )

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            return {
                'message_count': sum(self._published.values()),
                'dropped': self._dropped,
                'per_topic': dict(self._published),
                'connected': self._connected.is_set(),
                'broker': self.broker,
            }
