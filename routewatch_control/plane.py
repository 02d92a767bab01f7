"""
MQTTControlPlane - Command channel of the tracking service

Bounded Context: caregiver / operator commands in, service status out

Topics:
  - routewatch/control/{service_id}/commands  (subscribe, QoS 1)
  - routewatch/control/{service_id}/status    (publish, QoS 1, retained)

Status messages:
  {"status": ..., "timestamp": <UTC ISO>, "client_id": ..., "details": {...}}

  The broker publishes "offline" on our behalf (last will) if the process
  dies without disconnecting. Command replies echo the caller's request_id
  when the command carried one.

Threading:
  - paho network loop runs in its own thread (loop_start)
  - Command handlers run on that thread: they must only enqueue work
"""

import json
import logging
from datetime import datetime, timezone
from threading import Event
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

from .registry import CommandRegistry, CommandNotAvailableError, CommandValidationError

logger = logging.getLogger(__name__)

STATUS_QOS = 1
COMMAND_QOS = 1


class MQTTControlPlane:
    """
    Receives JSON commands and dispatches them through a CommandRegistry.

    Example:
        plane = MQTTControlPlane(
            broker_host="localhost",
            broker_port=1883,
            command_topic="routewatch/control/tracker_01/commands",
            status_topic="routewatch/control/tracker_01/status",
            client_id="tracker_tracker_01",
        )
        plane.command_registry.register(
            "dismiss_alarm", on_dismiss, "Silence alarm", required_fields=("person_id",)
        )
        plane.connect(timeout=5.0)

        # {"command": "dismiss_alarm", "person_id": "grandma", "request_id": "42"}
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int,
        command_topic: str,
        status_topic: str,
        client_id: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.command_topic = command_topic
        self.status_topic = status_topic
        self.client_id = client_id
        self.command_registry = CommandRegistry()

        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv311,
        )
        if username and password:
            self.client.username_pw_set(username, password)
        self.client.will_set(
            status_topic,
            json.dumps({"status": "offline", "client_id": client_id}),
            qos=STATUS_QOS,
            retain=True,
        )
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

        self._connected = Event()
        self._loop_running = False

    # ===== Lifecycle =====

    def connect(self, timeout: float = 5.0) -> bool:
        """Start the network loop and wait for CONNACK. False on timeout or error."""
        broker = f"{self.broker_host}:{self.broker_port}"
        logger.info(f"🔌 Control plane connecting to {broker}")
        try:
            self.client.connect(self.broker_host, self.broker_port, keepalive=60)
        except (OSError, ValueError) as e:
            logger.error(f"❌ Control plane cannot reach {broker}: {e}")
            return False

        self.client.loop_start()
        self._loop_running = True

        if not self._connected.wait(timeout=timeout):
            logger.error(f"❌ No CONNACK from {broker} within {timeout}s")
            return False
        return True

    def disconnect(self) -> None:
        """Publish "disconnected" and stop the loop. Idempotent."""
        if not self._loop_running:
            return
        self.publish_status("disconnected")
        self.client.loop_stop()
        self.client.disconnect()
        self._loop_running = False
        self._connected.clear()
        logger.info("🔌 Control plane disconnected")

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    # ===== Status =====

    def publish_status(self, status: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Publish a retained status message (errors are logged, not raised)."""
        message: Dict[str, Any] = {
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "client_id": self.client_id,
        }
        if details:
            message["details"] = details

        try:
            self.client.publish(
                self.status_topic,
                json.dumps(message, default=str),
                qos=STATUS_QOS,
                retain=True,
            )
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"❌ Status '{status}' not published: {e}")
            return
        logger.debug(f"📤 Status: {status}")

    # ===== Commands =====

    def handle_command(self, command_data: Dict[str, Any]) -> bool:
        """
        Validate and run one decoded command.

        Returns:
            True if the handler ran, False if the command was rejected
        """
        command = str(command_data.get("command") or "").strip().lower()
        if not command:
            logger.warning("⚠️ Command payload without 'command' field ignored")
            return False

        logger.info(f"🎯 Command: {command}")
        try:
            self.command_registry.execute(command, command_data)
        except CommandNotAvailableError as e:
            logger.warning(f"⚠️ {e}")
            return False
        except CommandValidationError as e:
            logger.warning(f"⚠️ {e}")
            self._reply(command_data, "command_rejected", {"command": command, "missing": e.missing})
            return False
        except (KeyError, ValueError) as e:
            logger.warning(f"⚠️ Command '{command}' failed: {e}")
            self._reply(command_data, "command_failed", {"command": command, "error": str(e)})
            return False

        return True

    def _reply(self, command_data: Dict[str, Any], status: str, details: Dict[str, Any]) -> None:
        request_id = command_data.get("request_id")
        if request_id is not None:
            details["request_id"] = request_id
        self.publish_status(status, details)

    # ===== paho callbacks (network thread) =====

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.error(f"❌ Control plane connection refused ({reason_code})")
            self._connected.clear()
            return

        client.subscribe(self.command_topic, qos=COMMAND_QOS)
        logger.info(f"✅ Control plane listening on {self.command_topic}")
        self.publish_status("connected")
        self._connected.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        self._connected.clear()
        if reason_code.is_failure:
            logger.warning(f"⚠️ Control plane lost connection ({reason_code})")

    def _on_message(self, client, userdata, msg):
        try:
            command_data = json.loads(msg.payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"❌ Undecodable command on {msg.topic}: {e}")
            return

        if not isinstance(command_data, dict):
            logger.error(f"❌ Command on {msg.topic} is not a JSON object")
            return

        try:
            self.handle_command(command_data)
        except Exception as e:
            logger.error(f"❌ Command handler crashed: {e}", exc_info=True)
