"""
routewatch_processor - Deviation Tracking Service

This package provides the service that consumes location samples over MQTT,
runs each tracked person through the deviation engine, and publishes status
changes, return guidance and feedback cues.

Architecture:
- DeviationTrackingService: Main orchestrator
- SessionWorker: Per-person serial executor
- RouteRegistry: Thread-safe route / assignment management
- InMemoryBufferStore: Buffer polygon artifacts
- TrackerConfig: Configuration management

Threading Model:
- MQTT Subscriber Thread (paho-mqtt internal, enqueues samples)
- Session Worker Threads (one per person)
- Timer Threads (confirmation timers, cue intervals)
- MQTT Publisher Thread (our thread for publishing)
- Control Plane Thread (paho-mqtt internal for commands)
"""

from routewatch_processor.config import (
    TrackerConfig,
    DeviationConfig,
    BufferConfig,
    RouteConfig,
    MQTTConfig,
    apply_env_overrides,
)
from routewatch_processor.store import InMemoryBufferStore
from routewatch_processor.registry import RouteRegistry
from routewatch_processor.service import DeviationTrackingService, SessionWorker

__all__ = [
    "TrackerConfig",
    "DeviationConfig",
    "BufferConfig",
    "RouteConfig",
    "MQTTConfig",
    "apply_env_overrides",
    "InMemoryBufferStore",
    "RouteRegistry",
    "DeviationTrackingService",
    "SessionWorker",
]
