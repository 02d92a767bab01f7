"""
RouteWatch Deviation Engine v1.0
================================

Bounded Context: Geofence deviation detection and return guidance.

Design Philosophy:
- Separation of Concerns: Geometry, Analytics, Feedback separated
- KISS: Simple para leer, no simple para escribir una vez
- Fail-open: sin geometría usable nadie está "fuera de ruta"
- Pragmatismo > Purismo: Usamos shapely para el buffer, no reinventamos

Architecture:

    routewatch_zone/
    ├── geometry/          # Pure geometry (immutable, stateless)
    │   ├── shapes.py      # LatLng, RoutePath, PositionSample, BufferPolygon
    │   ├── projection.py  # Local meters frame, haversine, bearing
    │   ├── buffer.py      # BufferPolygonBuilder
    │   └── detector.py    # ContainmentEngine (ray casting, union)
    │
    ├── analytics/         # Session state & guidance
    │   ├── guidance.py    # GuidanceCalculator, GuidanceTarget
    │   ├── timers.py      # Threading / manual timer schedulers
    │   └── tracker.py     # DeviationStateMachine
    │
    ├── feedback/          # Cue streams
    │   └── scheduler.py   # FeedbackScheduler (alarm / directional)
    │
    └── pipeline.py        # Orchestration (one pipeline per session)

Usage:

    # 1. Build buffer (once per registered route)
    from routewatch_zone import BufferPolygonBuilder, RoutePath

    path = RoutePath.from_records(records)
    polygon = BufferPolygonBuilder(radius_m=9).build("route-1", path)

    # 2. Containment (stateless)
    from routewatch_zone import ContainmentEngine

    inside = ContainmentEngine.is_inside_any(sample.location, [polygon])

    # 3. Or use Pipeline (high-level orchestration)
    from routewatch_zone import PipelineBuilder

    pipeline = (
        PipelineBuilder()
        .for_session("person-1")
        .with_geometry_source(lambda sid: ([polygon], [path]))
        .with_notifier(print)
        .with_cue_sink(print)
        .build()
    )
    pipeline.process(sample)
"""

# Errors
from routewatch_zone.errors import (
    RouteWatchError,
    InsufficientGeometryData,
    BufferComputationFailure,
    NoReferenceGeometry,
    NotificationDeliveryFailure,
)

# Geometry Layer (immutable, stateless)
from routewatch_zone.geometry.shapes import (
    LatLng,
    RoutePoint,
    RoutePath,
    PositionSample,
    BufferStatus,
    BufferPolygon,
)
from routewatch_zone.geometry.buffer import BufferPolygonBuilder, BufferPolygonStore
from routewatch_zone.geometry.detector import ContainmentEngine

# Analytics Layer (stateful)
from routewatch_zone.analytics.guidance import GuidanceCalculator, GuidanceTarget, TurnDirection
from routewatch_zone.analytics.timers import (
    TimerHandle,
    ThreadingTimerScheduler,
    ManualTimerScheduler,
)
from routewatch_zone.analytics.tracker import (
    DeviationState,
    DeviationStateMachine,
    RouteStatus,
    StatusChange,
)

# Feedback Layer
from routewatch_zone.feedback.scheduler import Cue, CueKind, FeedbackScheduler

# Pipeline (orchestration)
from routewatch_zone.pipeline import DeviationPipeline, PipelineBuilder

__all__ = [
    # Errors
    "RouteWatchError",
    "InsufficientGeometryData",
    "BufferComputationFailure",
    "NoReferenceGeometry",
    "NotificationDeliveryFailure",
    # Geometry
    "LatLng",
    "RoutePoint",
    "RoutePath",
    "PositionSample",
    "BufferStatus",
    "BufferPolygon",
    "BufferPolygonBuilder",
    "BufferPolygonStore",
    "ContainmentEngine",
    # Analytics
    "GuidanceCalculator",
    "GuidanceTarget",
    "TurnDirection",
    "TimerHandle",
    "ThreadingTimerScheduler",
    "ManualTimerScheduler",
    "DeviationState",
    "DeviationStateMachine",
    "RouteStatus",
    "StatusChange",
    # Feedback
    "Cue",
    "CueKind",
    "FeedbackScheduler",
    # Pipeline
    "DeviationPipeline",
    "PipelineBuilder",
]

__version__ = "1.0.0"
