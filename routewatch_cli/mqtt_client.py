"""
MQTT client wrapper for sending commands to DeviationTrackingService.

Handles MQTT connection, publishing, and disconnection.
"""

import json
import paho.mqtt.client as mqtt
from typing import Dict, Any, Optional


class MQTTCommandClient:
    """
    Short-lived MQTT client for control commands and test samples.

    Commands are published with QoS 1; the call returns once the broker
    acknowledged the message.
    """

    def __init__(
        self,
        broker: str = "localhost",
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: str = "routewatch_cli",
    ):
        """
        Initialize MQTT command client.

        Args:
            broker: MQTT broker host
            port: MQTT broker port
            username: Optional MQTT username
            password: Optional MQTT password
            client_id: MQTT client id
        """
        self.broker = broker
        self.port = port

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)

        if username and password:
            self.client.username_pw_set(username, password)

    def publish_json(
        self,
        topic: str,
        payload: Dict[str, Any],
        qos: int = 1,
        timeout: float = 5.0,
    ) -> None:
        """
        Publish one JSON payload and disconnect.

        Raises:
            ConnectionError: If unable to connect to MQTT broker
            ValueError: If payload is not JSON serializable
            RuntimeError: If the broker does not acknowledge in time
        """
        try:
            data = json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid payload: {e}")

        try:
            self.client.connect(self.broker, self.port, keepalive=60)
        except (ConnectionRefusedError, OSError) as e:
            raise ConnectionError(
                f"Unable to connect to MQTT broker at {self.broker}:{self.port}. "
                f"Is mosquitto running? ({e})"
            )

        self.client.loop_start()
        try:
            result = self.client.publish(topic, data, qos=qos)
            result.wait_for_publish(timeout=timeout)
            if not result.is_published():
                raise RuntimeError(f"Publish to {topic} not acknowledged after {timeout}s")
        finally:
            self.client.disconnect()
            self.client.loop_stop()

    def send_command(
        self,
        topic: str,
        command: Dict[str, Any],
        qos: int = 1
    ) -> None:
        """
        Send command to the control plane topic.

        Args:
            topic: MQTT topic (e.g., "routewatch/control/tracker_01/commands")
            command: Command dictionary (will be JSON serialized)
            qos: Quality of Service (default: 1 for control commands)
        """
        self.publish_json(topic, command, qos=qos)
        print(f"✅ Command sent: {command.get('command', 'unknown')}")
