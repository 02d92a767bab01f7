"""
routewatch_control - Control Plane for DeviationTrackingService

Bounded Context: MQTT-based command-and-control
Responsibilities:
  - MQTT connection management (Control Plane)
  - Command registration and payload validation
  - Command execution delegation

Architecture:
  - CommandRegistry: Explicit registration pattern
  - MQTTControlPlane: MQTT client + command reception
  - QoS 1 for control commands (at-least-once delivery)

Design Philosophy:
  - Explicit registration (fail-fast, no runtime surprises)
  - Thread-safe (registry uses locks)
  - Clear error messages (lists available commands / missing fields)
"""

from .registry import CommandRegistry, CommandNotAvailableError, CommandValidationError
from .plane import MQTTControlPlane

__all__ = [
    "CommandRegistry",
    "CommandNotAvailableError",
    "CommandValidationError",
    "MQTTControlPlane",
]
