"""
Analytics Layer
===============

Bounded Context: Stateful deviation tracking and return guidance.

Responsibilities:
- Debounced on-route / off-route state machine (mutable session)
- Return guidance (nearest point, steps, turn direction)
- Cancellable timers (real and virtual clock)

Design Philosophy:
- Mutable session encapsulated by DeviationStateMachine
- Immutable outputs (StatusChange, GuidanceTarget)
- Thread-safe via per-session lock
- Clear state management (single transition table)
"""

from routewatch_zone.analytics.guidance import (
    GuidanceCalculator,
    GuidanceTarget,
    TurnDirection,
    normalize_angle,
)
from routewatch_zone.analytics.timers import (
    TimerHandle,
    TimerScheduler,
    ThreadingTimerScheduler,
    ManualTimerScheduler,
)
from routewatch_zone.analytics.tracker import (
    DeviationState,
    DeviationEvent,
    DeviationSession,
    DeviationStateMachine,
    RouteStatus,
    StatusChange,
)

__all__ = [
    "GuidanceCalculator",
    "GuidanceTarget",
    "TurnDirection",
    "normalize_angle",
    "TimerHandle",
    "TimerScheduler",
    "ThreadingTimerScheduler",
    "ManualTimerScheduler",
    "DeviationState",
    "DeviationEvent",
    "DeviationSession",
    "DeviationStateMachine",
    "RouteStatus",
    "StatusChange",
]
