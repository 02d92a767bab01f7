"""
Feedback Scheduler Module
=========================

Alarm and directional cue streams for a confirmed excursion.

Design:
- One cue stream per session: alarm first, directional after dismissal
- Alarm strictly preempts directional cues (directional ticks are skipped)
- Directional cues need guidance that is not "straight"
- stop() bumps a generation counter: no new cue after cancellation
- Sink (speaker, vibration, MQTT) is injected as a callable
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from routewatch_zone.analytics.guidance import GuidanceTarget, TurnDirection
from routewatch_zone.analytics.timers import TimerHandle, TimerScheduler

logger = logging.getLogger(__name__)


class CueKind(str, Enum):
    ALARM = "alarm"
    DIRECTIONAL = "directional"


@dataclass(frozen=True)
class Cue:
    """Single feedback cue (alarm sound or turn instruction)."""

    session_id: str
    kind: CueKind
    sequence: int
    turn_direction: Optional[TurnDirection] = None
    steps_to_target: Optional[int] = None

    def __str__(self) -> str:
        if self.kind == CueKind.ALARM:
            return f"[{self.session_id}] #{self.sequence} ALARM"
        return (
            f"[{self.session_id}] #{self.sequence} "
            f"{self.turn_direction.value} ({self.steps_to_target} steps)"
        )


class FeedbackScheduler:
    """
    Schedules alarm and directional cues for one session.

    Lifecycle:
        engage()         -> alarm now, then every alarm_interval_ms
        dismiss_alarm()  -> alarm stops, directional ticks start producing cues
        stop()           -> everything cancelled (idempotent)

    Usage:
        feedback = FeedbackScheduler(
            session_id="person-1",
            scheduler=ThreadingTimerScheduler(),
            cue_sink=print,
            guidance_supplier=lambda: machine.session.guidance,
        )
        feedback.engage()
    """

    def __init__(
        self,
        session_id: str,
        scheduler: TimerScheduler,
        cue_sink: Callable[[Cue], None],
        guidance_supplier: Callable[[], Optional[GuidanceTarget]],
        alarm_interval_ms: int = 2000,
        directional_interval_ms: int = 2000,
    ):
        if alarm_interval_ms <= 0:
            raise ValueError(f"alarm_interval_ms must be positive, got {alarm_interval_ms}")
        if directional_interval_ms <= 0:
            raise ValueError(
                f"directional_interval_ms must be positive, got {directional_interval_ms}"
            )

        self.session_id = session_id
        self.scheduler = scheduler
        self.cue_sink = cue_sink
        self.guidance_supplier = guidance_supplier
        self.alarm_interval_ms = alarm_interval_ms
        self.directional_interval_ms = directional_interval_ms

        self._lock = threading.Lock()
        self._engaged = False
        self._alarm_active = False
        self._generation = 0
        self._sequence = 0
        self._alarm_handle: Optional[TimerHandle] = None
        self._directional_handle: Optional[TimerHandle] = None

    @property
    def engaged(self) -> bool:
        with self._lock:
            return self._engaged

    @property
    def alarm_active(self) -> bool:
        with self._lock:
            return self._alarm_active

    def engage(self) -> None:
        """Start the alarm (immediately) and the directional ticker."""
        with self._lock:
            if self._engaged:
                return
            self._engaged = True
            self._alarm_active = True
            self._generation += 1
            generation = self._generation

            self._alarm_handle = self.scheduler.call_every(
                self.alarm_interval_ms, lambda: self._alarm_tick(generation)
            )
            self._directional_handle = self.scheduler.call_every(
                self.directional_interval_ms, lambda: self._directional_tick(generation)
            )

        logger.info(f"🔔 Feedback engaged for '{self.session_id}'")
        self._alarm_tick(generation)

    def dismiss_alarm(self) -> bool:
        """
        Stop the alarm (local UI action). Directional cues keep running.

        Returns:
            True if an alarm was active
        """
        with self._lock:
            if not self._alarm_active:
                return False
            self._alarm_active = False
            handle, self._alarm_handle = self._alarm_handle, None

        if handle is not None:
            handle.cancel()
        logger.info(f"🔕 Alarm dismissed for '{self.session_id}'")
        return True

    def stop(self) -> None:
        """Cancel every cue. Safe to call repeatedly."""
        with self._lock:
            if not self._engaged and self._alarm_handle is None and self._directional_handle is None:
                return
            self._engaged = False
            self._alarm_active = False
            self._generation += 1
            handles = (self._alarm_handle, self._directional_handle)
            self._alarm_handle = None
            self._directional_handle = None

        for handle in handles:
            if handle is not None:
                handle.cancel()
        logger.info(f"🔇 Feedback stopped for '{self.session_id}'")

    def _alarm_tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or not self._alarm_active:
                return
            cue = Cue(self.session_id, CueKind.ALARM, self._next_sequence())
        self._deliver(cue)

    def _directional_tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or not self._engaged:
                return
            if self._alarm_active:
                return

        # Supplier may take the session lock, so call it unlocked
        guidance = self.guidance_supplier()
        if guidance is None or guidance.turn_direction == TurnDirection.STRAIGHT:
            return

        with self._lock:
            if generation != self._generation or self._alarm_active:
                return
            cue = Cue(
                self.session_id,
                CueKind.DIRECTIONAL,
                self._next_sequence(),
                turn_direction=guidance.turn_direction,
                steps_to_target=guidance.steps_to_target,
            )
        self._deliver(cue)

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    def _deliver(self, cue: Cue) -> None:
        try:
            self.cue_sink(cue)
        except Exception as e:
            logger.error(f"❌ Cue delivery failed for '{self.session_id}': {e}")
