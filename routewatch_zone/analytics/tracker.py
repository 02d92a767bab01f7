"""
Deviation State Machine Module
==============================

Stateful, debounced off-route detection for one tracked person.

States:
    ON_ROUTE -> PENDING_OFF_ROUTE -> CONFIRMED_OFF_ROUTE -> ON_ROUTE

Design:
- Explicit tagged state + single lookup table (state, event) -> handler
- One cancellable confirmation timer per session, guarded by a token
- Timer callback re-reads the LATEST containment result
- Fail-open: zero usable polygons forces ON_ROUTE
- Notifications are fire-and-forget (errors logged, transition kept)
- All mutation under the session lock (RLock, timer callbacks re-enter)
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from routewatch_zone.analytics.guidance import GuidanceCalculator, GuidanceTarget
from routewatch_zone.analytics.timers import TimerHandle, TimerScheduler
from routewatch_zone.errors import NoReferenceGeometry, NotificationDeliveryFailure
from routewatch_zone.feedback.scheduler import FeedbackScheduler
from routewatch_zone.geometry.detector import ContainmentEngine
from routewatch_zone.geometry.shapes import BufferPolygon, LatLng, PositionSample, RoutePath

logger = logging.getLogger(__name__)


class DeviationState(str, Enum):
    ON_ROUTE = "on_route"
    PENDING_OFF_ROUTE = "pending_off_route"
    CONFIRMED_OFF_ROUTE = "confirmed_off_route"


class DeviationEvent(str, Enum):
    INSIDE = "inside"
    OUTSIDE = "outside"
    TIMER_FIRED = "timer_fired"
    GEOMETRY_LOST = "geometry_lost"


class RouteStatus(str, Enum):
    """Status reported to the caregiver."""

    ON_ROUTE = "on-route"
    OFF_ROUTE = "off-route"


@dataclass(frozen=True)
class StatusChange:
    """Caregiver notification payload. last_location is set only for off-route."""

    session_id: str
    status: RouteStatus
    timestamp_ms: int
    last_location: Optional[LatLng] = None


@dataclass
class DeviationSession:
    """
    Mutable per-person session (owned by DeviationStateMachine).

    Reset, never destroyed, on return to route.
    """

    session_id: str
    state: DeviationState = DeviationState.ON_ROUTE
    pending_since_ms: Optional[int] = None
    off_route_path: List[LatLng] = field(default_factory=list)
    last_timestamp_ms: Optional[int] = None
    last_sample: Optional[PositionSample] = None
    last_inside: Optional[bool] = None
    guidance: Optional[GuidanceTarget] = None
    confirmation_timer: Optional[TimerHandle] = None
    timer_token: int = 0
    excursions_confirmed: int = 0

    def reset(self) -> None:
        """Back to ON_ROUTE. Keeps sample history and counters."""
        self.state = DeviationState.ON_ROUTE
        self.pending_since_ms = None
        self.off_route_path = []
        self.guidance = None
        self.confirmation_timer = None

    def to_dict(self) -> Dict:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "pending_since_ms": self.pending_since_ms,
            "off_route_points": len(self.off_route_path),
            "last_timestamp_ms": self.last_timestamp_ms,
            "last_inside": self.last_inside,
            "steps_to_target": self.guidance.steps_to_target if self.guidance else None,
            "turn_direction": self.guidance.turn_direction.value if self.guidance else None,
            "excursions_confirmed": self.excursions_confirmed,
        }


Notifier = Callable[[StatusChange], None]
GuidanceListener = Callable[[str, Optional[GuidanceTarget]], None]
Dispatch = Callable[[Callable[[], None]], None]


def _call_inline(task: Callable[[], None]) -> None:
    task()


class DeviationStateMachine:
    """
    Debounced on-route / off-route lifecycle for one session.

    Usage:
        machine = DeviationStateMachine(
            session_id="person-1",
            scheduler=ThreadingTimerScheduler(),
            guidance=GuidanceCalculator(),
            notifier=lambda change: print(change),
        )

        # Each position sample
        state = machine.process(sample, polygons, paths)
    """

    _TRANSITIONS = {
        (DeviationState.ON_ROUTE, DeviationEvent.OUTSIDE): "_begin_pending",
        (DeviationState.PENDING_OFF_ROUTE, DeviationEvent.INSIDE): "_cancel_pending",
        (DeviationState.PENDING_OFF_ROUTE, DeviationEvent.OUTSIDE): "_extend_pending",
        (DeviationState.PENDING_OFF_ROUTE, DeviationEvent.TIMER_FIRED): "_confirm_from_timer",
        (DeviationState.CONFIRMED_OFF_ROUTE, DeviationEvent.INSIDE): "_return_to_route",
        (DeviationState.CONFIRMED_OFF_ROUTE, DeviationEvent.OUTSIDE): "_extend_confirmed",
        (DeviationState.ON_ROUTE, DeviationEvent.GEOMETRY_LOST): "_fail_open",
        (DeviationState.PENDING_OFF_ROUTE, DeviationEvent.GEOMETRY_LOST): "_fail_open",
        (DeviationState.CONFIRMED_OFF_ROUTE, DeviationEvent.GEOMETRY_LOST): "_fail_open",
    }

    def __init__(
        self,
        session_id: str,
        scheduler: TimerScheduler,
        guidance: Optional[GuidanceCalculator] = None,
        feedback: Optional[FeedbackScheduler] = None,
        notifier: Optional[Notifier] = None,
        guidance_listener: Optional[GuidanceListener] = None,
        confirmation_delay_ms: int = 5000,
        drop_stale_samples: bool = True,
        dispatch: Optional[Dispatch] = None,
    ):
        if confirmation_delay_ms < 0:
            raise ValueError(
                f"confirmation_delay_ms must be >= 0, got {confirmation_delay_ms}"
            )

        self.session = DeviationSession(session_id=session_id)
        self.scheduler = scheduler
        self.guidance = guidance or GuidanceCalculator()
        self.feedback = feedback
        self.notifier = notifier
        self.guidance_listener = guidance_listener
        self.confirmation_delay_ms = confirmation_delay_ms
        self.drop_stale_samples = drop_stale_samples
        self.dispatch = dispatch or _call_inline

        self._lock = threading.RLock()
        self._paths: Sequence[RoutePath] = ()
        # True while refresh() re-evaluates an already recorded sample
        self._refreshing = False

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def state(self) -> DeviationState:
        with self._lock:
            return self.session.state

    @property
    def current_guidance(self) -> Optional[GuidanceTarget]:
        with self._lock:
            return self.session.guidance

    def snapshot(self) -> Dict:
        with self._lock:
            return self.session.to_dict()

    def process(
        self,
        sample: PositionSample,
        polygons: Sequence[BufferPolygon],
        paths: Sequence[RoutePath],
    ) -> DeviationState:
        """
        Feed one position sample.

        Args:
            sample: Position reading
            polygons: Buffer polygons of the person's assigned routes
            paths: Matching route paths (guidance target)

        Returns:
            State after the sample
        """
        with self._lock:
            last = self.session.last_timestamp_ms
            if self.drop_stale_samples and last is not None and sample.timestamp_ms <= last:
                logger.debug(
                    f"[{self.session_id}] Dropping stale sample "
                    f"t={sample.timestamp_ms} (last t={last})"
                )
                return self.session.state

            self.session.last_timestamp_ms = sample.timestamp_ms
            self.session.last_sample = sample
            self._paths = tuple(paths)

            self._evaluate(polygons)
            return self.session.state

    def refresh(
        self,
        polygons: Sequence[BufferPolygon],
        paths: Sequence[RoutePath],
    ) -> DeviationState:
        """Re-evaluate the latest sample after the geometry changed."""
        with self._lock:
            self._paths = tuple(paths)
            if self.session.last_sample is None:
                if not ContainmentEngine.usable_polygons(polygons):
                    self._handle(DeviationEvent.GEOMETRY_LOST)
                return self.session.state

            self._refreshing = True
            try:
                self._evaluate(polygons)
            finally:
                self._refreshing = False
            return self.session.state

    def reset(self) -> None:
        """Force ON_ROUTE without notifying (session teardown)."""
        with self._lock:
            self._cancel_timer()
            if self.feedback is not None:
                self.feedback.stop()
            self.session.reset()

    def _evaluate(self, polygons: Sequence[BufferPolygon]) -> None:
        sample = self.session.last_sample
        usable = ContainmentEngine.usable_polygons(polygons)

        if not usable:
            self.session.last_inside = None
            self._handle(DeviationEvent.GEOMETRY_LOST)
            return

        inside = ContainmentEngine.is_inside_any(sample.location, usable)
        self.session.last_inside = inside
        self._handle(DeviationEvent.INSIDE if inside else DeviationEvent.OUTSIDE)

    def _handle(self, event: DeviationEvent) -> None:
        handler_name = self._TRANSITIONS.get((self.session.state, event))
        if handler_name is None:
            return
        getattr(self, handler_name)()

    # Transition handlers

    def _begin_pending(self) -> None:
        sample = self.session.last_sample
        self.session.state = DeviationState.PENDING_OFF_ROUTE
        # A refresh may replay a sample taken long ago; the sample clock then
        # starts at the next real sample, only the timer runs from now.
        self.session.pending_since_ms = None if self._refreshing else sample.timestamp_ms
        self.session.off_route_path = [sample.location]
        logger.info(f"⚠️ [{self.session_id}] Outside buffer, confirming in {self.confirmation_delay_ms}ms")

        if self.confirmation_delay_ms == 0:
            self._confirm()
            return
        self._start_timer()

    def _cancel_pending(self) -> None:
        self._cancel_timer()
        self.session.reset()
        logger.info(f"↩️ [{self.session_id}] Back inside before confirmation")

    def _extend_pending(self) -> None:
        if self._refreshing:
            return
        sample = self.session.last_sample
        self.session.off_route_path.append(sample.location)

        if self.session.pending_since_ms is None:
            self.session.pending_since_ms = sample.timestamp_ms
            return
        elapsed = sample.timestamp_ms - self.session.pending_since_ms
        if elapsed >= self.confirmation_delay_ms:
            self._confirm()

    def _confirm_from_timer(self) -> None:
        if self.session.last_inside is False:
            self._confirm()

    def _confirm(self) -> None:
        self._cancel_timer()
        sample = self.session.last_sample
        self.session.state = DeviationState.CONFIRMED_OFF_ROUTE
        self.session.excursions_confirmed += 1
        logger.warning(f"🚨 [{self.session_id}] Off route confirmed")

        self._notify(RouteStatus.OFF_ROUTE, sample.timestamp_ms, sample.location)
        self._update_guidance()
        if self.feedback is not None:
            self.feedback.engage()

    def _extend_confirmed(self) -> None:
        if not self._refreshing:
            self.session.off_route_path.append(self.session.last_sample.location)
        self._update_guidance()

    def _return_to_route(self) -> None:
        if self.feedback is not None:
            self.feedback.stop()
        self._cancel_timer()
        self.session.reset()
        logger.info(f"✅ [{self.session_id}] Back on route")

        self._notify(RouteStatus.ON_ROUTE, self.session.last_timestamp_ms or 0)
        self._publish_guidance(None)

    def _fail_open(self) -> None:
        was_confirmed = self.session.state == DeviationState.CONFIRMED_OFF_ROUTE
        was_tracking = self.session.state != DeviationState.ON_ROUTE

        self._cancel_timer()
        if self.feedback is not None:
            self.feedback.stop()
        self.session.reset()

        if was_tracking:
            logger.warning(f"⚠️ {NoReferenceGeometry(self.session_id)}, forcing on-route")
        else:
            logger.debug(f"{NoReferenceGeometry(self.session_id)}")

        if was_confirmed:
            self._notify(RouteStatus.ON_ROUTE, self.session.last_timestamp_ms or 0)
            self._publish_guidance(None)

    # Timer

    def _start_timer(self) -> None:
        self._cancel_timer()
        self.session.timer_token += 1
        token = self.session.timer_token

        def fire():
            self.dispatch(lambda: self._on_confirmation_timer(token))

        self.session.confirmation_timer = self.scheduler.call_later(
            self.confirmation_delay_ms, fire
        )

    def _cancel_timer(self) -> None:
        handle = self.session.confirmation_timer
        self.session.confirmation_timer = None
        # Any callback already in flight carries a stale token
        self.session.timer_token += 1
        if handle is not None:
            handle.cancel()

    def _on_confirmation_timer(self, token: int) -> None:
        with self._lock:
            if token != self.session.timer_token:
                logger.debug(f"[{self.session_id}] Ignoring superseded confirmation timer")
                return
            self.session.confirmation_timer = None
            self._handle(DeviationEvent.TIMER_FIRED)

    # Outputs

    def _update_guidance(self) -> None:
        target = self.guidance.compute(self.session.last_sample, self._paths)
        self.session.guidance = target
        if target is not None:
            logger.debug(f"[{self.session_id}] Guidance: {target}")
        self._publish_guidance(target)

    def _publish_guidance(self, target: Optional[GuidanceTarget]) -> None:
        if self.guidance_listener is None:
            return
        try:
            self.guidance_listener(self.session_id, target)
        except Exception as e:
            logger.error(f"❌ [{self.session_id}] Guidance listener failed: {e}")

    def _notify(
        self,
        status: RouteStatus,
        timestamp_ms: int,
        last_location: Optional[LatLng] = None,
    ) -> None:
        if self.notifier is None:
            return
        change = StatusChange(
            session_id=self.session_id,
            status=status,
            timestamp_ms=timestamp_ms,
            last_location=last_location if status == RouteStatus.OFF_ROUTE else None,
        )
        try:
            self.notifier(change)
        except Exception as e:
            failure = NotificationDeliveryFailure(self.session_id, status.value, e)
            logger.error(f"❌ {failure}")

    def __repr__(self) -> str:
        return f"DeviationStateMachine(session={self.session_id}, state={self.session.state.value})"
