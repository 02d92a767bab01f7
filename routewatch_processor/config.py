"""
Configuration schema for DeviationTrackingService.

This module defines the configuration structure for the tracking service,
including deviation timings, buffer settings, pre-registered routes, route
assignments, and MQTT settings.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional
import yaml


@dataclass(frozen=True)
class DeviationConfig:
    """Debounce, feedback and guidance timings."""

    confirmation_delay_ms: int = 5000
    alarm_interval_ms: int = 2000
    directional_interval_ms: int = 2000
    stride_length_m: float = 0.6
    turn_tolerance_deg: float = 15.0
    drop_stale_samples: bool = True

    def __post_init__(self):
        """Validate deviation configuration."""
        if self.confirmation_delay_ms < 0:
            raise ValueError(
                f"confirmation_delay_ms must be >= 0, got {self.confirmation_delay_ms}"
            )
        if self.alarm_interval_ms <= 0:
            raise ValueError(
                f"alarm_interval_ms must be > 0, got {self.alarm_interval_ms}"
            )
        if self.directional_interval_ms <= 0:
            raise ValueError(
                f"directional_interval_ms must be > 0, got {self.directional_interval_ms}"
            )
        if self.stride_length_m <= 0:
            raise ValueError(
                f"stride_length_m must be > 0, got {self.stride_length_m}"
            )
        if not 0.0 <= self.turn_tolerance_deg <= 180.0:
            raise ValueError(
                f"turn_tolerance_deg must be in [0, 180], got {self.turn_tolerance_deg}"
            )


@dataclass(frozen=True)
class BufferConfig:
    """Buffer polygon construction settings."""

    radius_m: float = 9.0
    simplify_tolerance_m: float = 1.0
    arc_segments: int = 16

    def __post_init__(self):
        """Validate buffer configuration."""
        if self.radius_m <= 0:
            raise ValueError(f"radius_m must be > 0, got {self.radius_m}")
        if self.simplify_tolerance_m < 0:
            raise ValueError(
                f"simplify_tolerance_m must be >= 0, got {self.simplify_tolerance_m}"
            )
        if self.arc_segments < 2:
            raise ValueError(f"arc_segments must be >= 2, got {self.arc_segments}")


@dataclass(frozen=True)
class RouteConfig:
    """Pre-registered route (points as recorded)."""

    route_id: str
    points: List[Dict[str, float]]
    radius_m: Optional[float] = None

    def __post_init__(self):
        """Validate route configuration."""
        if not self.route_id:
            raise ValueError("route_id cannot be empty")
        if len(self.points) < 2:
            raise ValueError(
                f"Route '{self.route_id}' must have at least 2 points, "
                f"got {len(self.points)}"
            )
        if self.radius_m is not None and self.radius_m <= 0:
            raise ValueError(
                f"Route '{self.route_id}' radius_m must be > 0, got {self.radius_m}"
            )


@dataclass(frozen=True)
class MQTTConfig:
    """MQTT broker configuration."""

    broker: str = "localhost"
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    qos: int = 0  # Data plane QoS (fire-and-forget)

    location_topic: str = "routewatch/data/locations/+"
    status_topic: str = "routewatch/data/status/{person_id}"
    guidance_topic: str = "routewatch/data/guidance/{person_id}"
    cue_topic: str = "routewatch/data/cues/{person_id}"

    def __post_init__(self):
        """Validate MQTT configuration."""
        if not 1 <= self.port <= 65535:
            raise ValueError(
                f"MQTT port must be in [1, 65535], got {self.port}"
            )

        if self.qos not in {0, 1, 2}:
            raise ValueError(
                f"MQTT QoS must be 0, 1, or 2, got {self.qos}"
            )

        for name in ("status_topic", "guidance_topic", "cue_topic"):
            if "{person_id}" not in getattr(self, name):
                raise ValueError(f"{name} must contain a {{person_id}} placeholder")


@dataclass(frozen=True)
class TrackerConfig:
    """
    Main configuration for DeviationTrackingService.

    This configuration is loaded from YAML and validated at startup.
    Immutable after construction (frozen dataclass).
    """

    # Service identification
    service_id: str

    deviation: DeviationConfig = field(default_factory=DeviationConfig)
    buffer: BufferConfig = field(default_factory=BufferConfig)

    # Routes known at startup + person -> route ids
    routes: List[RouteConfig] = field(default_factory=list)
    assignments: Dict[str, List[str]] = field(default_factory=dict)

    mqtt_config: MQTTConfig = field(default_factory=MQTTConfig)

    def __post_init__(self):
        """Validate tracker configuration."""
        if not self.service_id:
            raise ValueError("service_id cannot be empty")

        route_ids = [r.route_id for r in self.routes]
        duplicates = {rid for rid in route_ids if route_ids.count(rid) > 1}
        if duplicates:
            raise ValueError(f"Duplicate route ids: {sorted(duplicates)}")

        known = set(route_ids)
        for person_id, assigned in self.assignments.items():
            unknown = [rid for rid in assigned if rid not in known]
            if unknown:
                raise ValueError(
                    f"Person '{person_id}' is assigned unknown routes: {unknown}"
                )

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "TrackerConfig":
        """
        Load configuration from YAML file.

        Example YAML:
            service_id: "tracker_01"

            deviation:
              confirmation_delay_ms: 5000
              alarm_interval_ms: 2000
              directional_interval_ms: 2000
              stride_length_m: 0.6
              turn_tolerance_deg: 15

            buffer:
              radius_m: 9
              simplify_tolerance_m: 1.0

            routes:
              - route_id: "park_loop"
                radius_m: 12
                points:
                  - {latitude: 40.4168, longitude: -3.7038, timestamp: 0}
                  - {latitude: 40.4170, longitude: -3.7030, timestamp: 60000}

            assignments:
              grandma: ["park_loop"]

            mqtt_config:
              broker: "localhost"
              port: 1883
        """
        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Mapping) -> "TrackerConfig":
        """Build from an already-parsed mapping (YAML document)."""
        deviation = DeviationConfig(**(data.get("deviation") or {}))
        buffer = BufferConfig(**(data.get("buffer") or {}))
        mqtt_config = MQTTConfig(**(data.get("mqtt_config") or {}))

        routes = [
            RouteConfig(
                route_id=str(r["route_id"]),
                points=list(r["points"]),
                radius_m=r.get("radius_m"),
            )
            for r in data.get("routes") or []
        ]

        assignments = {
            str(person_id): [str(rid) for rid in route_ids]
            for person_id, route_ids in (data.get("assignments") or {}).items()
        }

        return cls(
            service_id=data["service_id"],
            deviation=deviation,
            buffer=buffer,
            routes=routes,
            assignments=assignments,
            mqtt_config=mqtt_config,
        )


_ENV_OVERRIDES = {
    "ROUTEWATCH_CONFIRMATION_DELAY_MS": ("deviation", "confirmation_delay_ms", int),
    "ROUTEWATCH_ALARM_INTERVAL_MS": ("deviation", "alarm_interval_ms", int),
    "ROUTEWATCH_DIRECTIONAL_INTERVAL_MS": ("deviation", "directional_interval_ms", int),
    "ROUTEWATCH_STRIDE_LENGTH_M": ("deviation", "stride_length_m", float),
    "ROUTEWATCH_TURN_TOLERANCE_DEG": ("deviation", "turn_tolerance_deg", float),
    "ROUTEWATCH_BUFFER_RADIUS_M": ("buffer", "radius_m", float),
    "ROUTEWATCH_MQTT_BROKER": ("mqtt_config", "broker", str),
    "ROUTEWATCH_MQTT_PORT": ("mqtt_config", "port", int),
}


def apply_env_overrides(
    config: TrackerConfig, environ: Optional[Mapping[str, str]] = None
) -> TrackerConfig:
    """
    Return a copy of config with ROUTEWATCH_* environment overrides applied.

    Raises:
        ValueError: If a variable cannot be parsed or fails validation
    """
    environ = os.environ if environ is None else environ

    sections = {
        "deviation": {},
        "buffer": {},
        "mqtt_config": {},
    }
    for variable, (section, attribute, parse) in _ENV_OVERRIDES.items():
        raw = environ.get(variable)
        if raw is None or raw == "":
            continue
        try:
            sections[section][attribute] = parse(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {variable}: {raw!r}") from e

    if not any(sections.values()):
        return config

    return replace(
        config,
        deviation=replace(config.deviation, **sections["deviation"]),
        buffer=replace(config.buffer, **sections["buffer"]),
        mqtt_config=replace(config.mqtt_config, **sections["mqtt_config"]),
    )
