"""
Deviation Pipeline Module
=========================

Bounded Context: Per-session orchestration of the deviation engine.

Design:
- Orchestrator: containment + state machine + guidance + feedback
- Builder pattern: Fluent configuration
- Fail Fast: Validation at build time, not runtime
- Geometry pulled from an injected source on every sample

Dependencies:
- routewatch_zone.geometry (polygons, containment)
- routewatch_zone.analytics (state machine, guidance, timers)
- routewatch_zone.feedback (cue scheduler)
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from routewatch_zone.analytics.guidance import GuidanceCalculator, GuidanceTarget
from routewatch_zone.analytics.timers import TimerScheduler, ThreadingTimerScheduler
from routewatch_zone.analytics.tracker import (
    DeviationState,
    DeviationStateMachine,
    Dispatch,
    GuidanceListener,
    Notifier,
)
from routewatch_zone.feedback.scheduler import Cue, FeedbackScheduler
from routewatch_zone.geometry.shapes import BufferPolygon, PositionSample, RoutePath

logger = logging.getLogger(__name__)

GeometrySource = Callable[[str], Tuple[Sequence[BufferPolygon], Sequence[RoutePath]]]


@dataclass
class PipelineConfig:
    """
    Pipeline configuration.

    Design:
    - All dependencies injected
    - Validated at construction
    """

    session_id: str
    geometry_source: GeometrySource
    scheduler: TimerScheduler
    guidance: GuidanceCalculator
    notifier: Optional[Notifier] = None
    cue_sink: Optional[Callable[[Cue], None]] = None
    guidance_listener: Optional[GuidanceListener] = None
    dispatch: Optional[Dispatch] = None
    confirmation_delay_ms: int = 5000
    alarm_interval_ms: int = 2000
    directional_interval_ms: int = 2000
    drop_stale_samples: bool = True


class DeviationPipeline:
    """
    Runs every position sample of one session through the engine.

    Usage:
        pipeline = (
            PipelineBuilder()
            .for_session("person-1")
            .with_geometry_source(registry.snapshot_for)
            .with_notifier(print)
            .build()
        )

        pipeline.process(sample)
    """

    def __init__(self, config: PipelineConfig):
        self.config = config
        self._validate_config()

        self.feedback = FeedbackScheduler(
            session_id=config.session_id,
            scheduler=config.scheduler,
            cue_sink=config.cue_sink or (lambda cue: None),
            guidance_supplier=lambda: self.machine.current_guidance,
            alarm_interval_ms=config.alarm_interval_ms,
            directional_interval_ms=config.directional_interval_ms,
        )
        self.machine = DeviationStateMachine(
            session_id=config.session_id,
            scheduler=config.scheduler,
            guidance=config.guidance,
            feedback=self.feedback,
            notifier=config.notifier,
            guidance_listener=config.guidance_listener,
            confirmation_delay_ms=config.confirmation_delay_ms,
            drop_stale_samples=config.drop_stale_samples,
            dispatch=config.dispatch,
        )

    def _validate_config(self) -> None:
        """Validate configuration (fail fast)."""
        if not self.config.session_id:
            raise ValueError("session_id is required")
        if self.config.geometry_source is None:
            raise ValueError("geometry_source is required")

    @property
    def session_id(self) -> str:
        return self.config.session_id

    @property
    def state(self) -> DeviationState:
        return self.machine.state

    @property
    def guidance(self) -> Optional[GuidanceTarget]:
        return self.machine.current_guidance

    def process(self, sample: PositionSample) -> DeviationState:
        """Containment test + state transition for one sample."""
        polygons, paths = self.config.geometry_source(self.session_id)
        return self.machine.process(sample, polygons, paths)

    def refresh_geometry(self) -> DeviationState:
        """Re-run the latest sample against freshly loaded geometry."""
        polygons, paths = self.config.geometry_source(self.session_id)
        return self.machine.refresh(polygons, paths)

    def dismiss_alarm(self) -> bool:
        return self.feedback.dismiss_alarm()

    def close(self) -> None:
        self.machine.reset()

    def snapshot(self) -> dict:
        data = self.machine.snapshot()
        data["alarm_active"] = self.feedback.alarm_active
        return data


class PipelineBuilder:
    """
    Builder for DeviationPipeline.

    Design:
    - Fluent API for construction
    - Fail-fast validation
    - Sensible defaults (real-time scheduler, default guidance)
    """

    def __init__(self):
        self._session_id: Optional[str] = None
        self._geometry_source: Optional[GeometrySource] = None
        self._scheduler: Optional[TimerScheduler] = None
        self._guidance: Optional[GuidanceCalculator] = None
        self._notifier: Optional[Notifier] = None
        self._cue_sink: Optional[Callable[[Cue], None]] = None
        self._guidance_listener: Optional[GuidanceListener] = None
        self._dispatch: Optional[Dispatch] = None
        self._confirmation_delay_ms: int = 5000
        self._alarm_interval_ms: int = 2000
        self._directional_interval_ms: int = 2000
        self._drop_stale_samples: bool = True

    def for_session(self, session_id: str) -> "PipelineBuilder":
        """Set tracked person / session id."""
        self._session_id = session_id
        return self

    def with_geometry_source(self, source: GeometrySource) -> "PipelineBuilder":
        """Set callable returning (polygons, paths) for a session."""
        self._geometry_source = source
        return self

    def with_scheduler(self, scheduler: TimerScheduler) -> "PipelineBuilder":
        self._scheduler = scheduler
        return self

    def with_guidance(self, guidance: GuidanceCalculator) -> "PipelineBuilder":
        self._guidance = guidance
        return self

    def with_notifier(self, notifier: Notifier) -> "PipelineBuilder":
        """Set caregiver notification callable (fire-and-forget)."""
        self._notifier = notifier
        return self

    def with_cue_sink(self, sink: Callable[[Cue], None]) -> "PipelineBuilder":
        self._cue_sink = sink
        return self

    def with_guidance_listener(self, listener: GuidanceListener) -> "PipelineBuilder":
        self._guidance_listener = listener
        return self

    def with_dispatch(self, dispatch: Dispatch) -> "PipelineBuilder":
        """Set executor for timer callbacks (e.g. the session worker queue)."""
        self._dispatch = dispatch
        return self

    def with_timings(
        self,
        confirmation_delay_ms: int = 5000,
        alarm_interval_ms: int = 2000,
        directional_interval_ms: int = 2000,
    ) -> "PipelineBuilder":
        self._confirmation_delay_ms = confirmation_delay_ms
        self._alarm_interval_ms = alarm_interval_ms
        self._directional_interval_ms = directional_interval_ms
        return self

    def with_drop_stale_samples(self, enabled: bool) -> "PipelineBuilder":
        self._drop_stale_samples = enabled
        return self

    def build(self) -> DeviationPipeline:
        """
        Build the pipeline.

        Raises:
            ValueError: If required configuration is missing
        """
        if self._session_id is None:
            raise ValueError("Session id is required (use .for_session())")
        if self._geometry_source is None:
            raise ValueError("Geometry source is required (use .with_geometry_source())")

        config = PipelineConfig(
            session_id=self._session_id,
            geometry_source=self._geometry_source,
            scheduler=self._scheduler or ThreadingTimerScheduler(),
            guidance=self._guidance or GuidanceCalculator(),
            notifier=self._notifier,
            cue_sink=self._cue_sink,
            guidance_listener=self._guidance_listener,
            dispatch=self._dispatch,
            confirmation_delay_ms=self._confirmation_delay_ms,
            alarm_interval_ms=self._alarm_interval_ms,
            directional_interval_ms=self._directional_interval_ms,
            drop_stale_samples=self._drop_stale_samples,
        )

        return DeviationPipeline(config)
