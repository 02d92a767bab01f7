"""
Test Deviation State Machine
============================

Debounced off-route confirmation, return to route and fail-open behaviour,
driven by a manual clock.

Usage:
    pytest test_deviation.py -v
"""

import pytest

from routewatch_zone import (
    BufferPolygonBuilder,
    CueKind,
    DeviationState,
    DeviationStateMachine,
    FeedbackScheduler,
    GuidanceCalculator,
    ManualTimerScheduler,
    PipelineBuilder,
    PositionSample,
    RoutePath,
    RouteStatus,
)

PATH = RoutePath.from_records([
    {"latitude": 0.0, "longitude": 0.0, "timestamp": 0},
    {"latitude": 0.0, "longitude": 0.001, "timestamp": 1000},
])
POLYGON = BufferPolygonBuilder(radius_m=9).build("route-1", PATH)


def inside(t, heading=90.0):
    return PositionSample(latitude=0.0, longitude=0.0005, heading=heading, timestamp_ms=t)


def outside(t, heading=0.0):
    # ~55 m north of the route
    return PositionSample(latitude=0.0005, longitude=0.0005, heading=heading, timestamp_ms=t)


class Recorder:
    """Collects notifications, guidance updates and cues."""

    def __init__(self):
        self.changes = []
        self.guidance = []
        self.cues = []

    def notify(self, change):
        self.changes.append(change)

    def on_guidance(self, session_id, target):
        self.guidance.append(target)


def make_machine(delay_ms=5000, with_feedback=False, **kwargs):
    clock = ManualTimerScheduler()
    recorder = Recorder()
    machine = None
    feedback = None
    if with_feedback:
        feedback = FeedbackScheduler(
            session_id="grandma",
            scheduler=clock,
            cue_sink=recorder.cues.append,
            guidance_supplier=lambda: machine.current_guidance,
        )
    machine = DeviationStateMachine(
        session_id="grandma",
        scheduler=clock,
        guidance=GuidanceCalculator(),
        feedback=feedback,
        notifier=recorder.notify,
        guidance_listener=recorder.on_guidance,
        confirmation_delay_ms=delay_ms,
        **kwargs,
    )
    return machine, clock, recorder


def test_confirmation_after_delay_not_before():
    """Six outside samples, 1 s apart: confirmed at 5000 ms exactly."""
    print("\n" + "=" * 60)
    print("TEST: Debounced Confirmation")
    print("=" * 60)

    machine, clock, recorder = make_machine()

    for t in range(0, 5000, 1000):
        assert machine.process(outside(t), [POLYGON], [PATH]) == DeviationState.PENDING_OFF_ROUTE
        clock.advance_to(t)
        assert recorder.changes == []
    print("✓ Pending through 4000ms, no notification")

    assert machine.process(outside(5000), [POLYGON], [PATH]) == DeviationState.CONFIRMED_OFF_ROUTE
    clock.advance_to(5000)

    assert len(recorder.changes) == 1
    change = recorder.changes[0]
    assert change.status == RouteStatus.OFF_ROUTE
    assert change.timestamp_ms == 5000
    assert change.last_location.latitude == pytest.approx(0.0005)
    print("✓ Confirmed at 5000ms with last location")


def test_timer_confirms_without_new_samples():
    machine, clock, recorder = make_machine()

    machine.process(outside(0), [POLYGON], [PATH])
    clock.advance(4999)
    assert machine.state == DeviationState.PENDING_OFF_ROUTE

    clock.advance(1)
    assert machine.state == DeviationState.CONFIRMED_OFF_ROUTE
    assert [c.status for c in recorder.changes] == [RouteStatus.OFF_ROUTE]


def test_early_return_cancels_pending():
    machine, clock, recorder = make_machine()

    machine.process(outside(0), [POLYGON], [PATH])
    machine.process(outside(1000), [POLYGON], [PATH])
    assert machine.process(inside(2000), [POLYGON], [PATH]) == DeviationState.ON_ROUTE

    clock.advance(10000)
    assert machine.state == DeviationState.ON_ROUTE
    assert recorder.changes == []
    assert recorder.guidance == []


def test_confirmed_once_per_excursion():
    machine, clock, recorder = make_machine()

    for t in range(0, 12000, 1000):
        machine.process(outside(t), [POLYGON], [PATH])
        clock.advance_to(t)

    assert [c.status for c in recorder.changes] == [RouteStatus.OFF_ROUTE]
    assert machine.snapshot()["excursions_confirmed"] == 1
    assert machine.snapshot()["off_route_points"] == 12


def test_return_to_route_after_confirmation():
    machine, clock, recorder = make_machine(with_feedback=True)

    machine.process(outside(0), [POLYGON], [PATH])
    clock.advance(5000)
    assert machine.state == DeviationState.CONFIRMED_OFF_ROUTE
    assert recorder.guidance[-1] is not None

    machine.process(inside(6000), [POLYGON], [PATH])
    assert machine.state == DeviationState.ON_ROUTE

    statuses = [c.status for c in recorder.changes]
    assert statuses == [RouteStatus.OFF_ROUTE, RouteStatus.ON_ROUTE]
    assert recorder.changes[-1].last_location is None
    assert recorder.changes[-1].timestamp_ms == 6000
    assert recorder.guidance[-1] is None
    assert machine.current_guidance is None

    cues_before = len(recorder.cues)
    clock.advance(10000)
    assert len(recorder.cues) == cues_before


def test_guidance_tracks_confirmed_excursion():
    machine, clock, recorder = make_machine(delay_ms=0)

    machine.process(outside(0, heading=0.0), [POLYGON], [PATH])
    assert machine.state == DeviationState.CONFIRMED_OFF_ROUTE

    first = machine.current_guidance
    # Route is due south; facing north means turning around
    assert first.bearing_deg == pytest.approx(180.0, abs=1e-3)
    assert first.steps_to_target == 93

    machine.process(outside(1000, heading=180.0), [POLYGON], [PATH])
    assert machine.current_guidance.turn_direction.value == "straight"
    assert len(recorder.guidance) == 2


def test_feedback_engaged_on_confirmation():
    machine, clock, recorder = make_machine(with_feedback=True)

    machine.process(outside(0, heading=90.0), [POLYGON], [PATH])
    clock.advance(5000)
    assert [c.kind for c in recorder.cues] == [CueKind.ALARM]

    machine.feedback.dismiss_alarm()
    clock.advance(2000)
    directional = [c for c in recorder.cues if c.kind == CueKind.DIRECTIONAL]
    assert len(directional) == 1
    assert directional[0].turn_direction.value == "right"


def test_late_timer_after_return_is_ignored():
    """Timer callback queued before an inside sample must not confirm."""
    deferred = []
    machine, clock, recorder = make_machine(dispatch=deferred.append)

    machine.process(outside(0), [POLYGON], [PATH])
    clock.advance(5000)
    assert len(deferred) == 1
    assert machine.state == DeviationState.PENDING_OFF_ROUTE

    machine.process(inside(5001), [POLYGON], [PATH])
    for task in deferred:
        task()

    assert machine.state == DeviationState.ON_ROUTE
    assert recorder.changes == []


def test_superseded_timer_is_ignored():
    deferred = []
    machine, clock, recorder = make_machine(dispatch=deferred.append)

    machine.process(outside(0), [POLYGON], [PATH])
    clock.advance(5000)
    machine.process(inside(5001), [POLYGON], [PATH])
    machine.process(outside(6000), [POLYGON], [PATH])

    # The first excursion's callback runs late, during the second excursion
    deferred[0]()
    assert machine.state == DeviationState.PENDING_OFF_ROUTE
    assert recorder.changes == []


def test_stale_samples_are_dropped():
    machine, clock, recorder = make_machine()

    machine.process(outside(1000), [POLYGON], [PATH])
    machine.process(outside(1000), [POLYGON], [PATH])
    machine.process(inside(500), [POLYGON], [PATH])

    assert machine.state == DeviationState.PENDING_OFF_ROUTE
    assert machine.snapshot()["off_route_points"] == 1
    assert machine.snapshot()["last_timestamp_ms"] == 1000


def test_stale_samples_accepted_when_disabled():
    machine, clock, recorder = make_machine(drop_stale_samples=False)

    machine.process(outside(1000), [POLYGON], [PATH])
    machine.process(inside(500), [POLYGON], [PATH])
    assert machine.state == DeviationState.ON_ROUTE


def test_notifier_failure_does_not_block_transition():
    clock = ManualTimerScheduler()
    guidance = []

    def broken_notifier(change):
        raise ConnectionError("caregiver unreachable")

    machine = DeviationStateMachine(
        session_id="grandma",
        scheduler=clock,
        notifier=broken_notifier,
        guidance_listener=lambda sid, target: guidance.append(target),
        confirmation_delay_ms=0,
    )

    machine.process(outside(0), [POLYGON], [PATH])
    assert machine.state == DeviationState.CONFIRMED_OFF_ROUTE
    assert guidance and guidance[0] is not None

    machine.process(inside(1000), [POLYGON], [PATH])
    assert machine.state == DeviationState.ON_ROUTE


def test_losing_geometry_fails_open():
    """Confirmed session whose polygons disappear goes back on-route."""
    print("\n" + "=" * 60)
    print("TEST: Fail-open Without Geometry")
    print("=" * 60)

    machine, clock, recorder = make_machine(with_feedback=True)
    machine.process(outside(0), [POLYGON], [PATH])
    clock.advance(5000)
    assert machine.state == DeviationState.CONFIRMED_OFF_ROUTE

    machine.process(outside(6000), [], [])
    assert machine.state == DeviationState.ON_ROUTE
    assert recorder.changes[-1].status == RouteStatus.ON_ROUTE
    assert machine.feedback.engaged is False
    print("✓ On-route, feedback stopped")

    cues_before = len(recorder.cues)
    clock.advance(10000)
    assert len(recorder.cues) == cues_before

    # Still no geometry: stays on-route silently
    machine.process(outside(20000), [], [])
    assert machine.state == DeviationState.ON_ROUTE
    assert len(recorder.changes) == 2


def test_pending_without_geometry_is_silent():
    machine, clock, recorder = make_machine()
    machine.process(outside(0), [POLYGON], [PATH])
    machine.refresh([], [])

    assert machine.state == DeviationState.ON_ROUTE
    clock.advance(10000)
    assert recorder.changes == []


def test_unusable_polygons_count_as_no_geometry():
    from routewatch_zone import BufferPolygon

    machine, clock, recorder = make_machine(delay_ms=0)
    failed = BufferPolygon.failed("route-1", 9.0, "calculation")

    machine.process(outside(0), [failed], [PATH])
    assert machine.state == DeviationState.ON_ROUTE
    assert recorder.changes == []


def test_refresh_reevaluates_latest_sample():
    machine, clock, recorder = make_machine(delay_ms=0)

    machine.process(outside(0), [], [])
    assert machine.state == DeviationState.ON_ROUTE

    machine.refresh([POLYGON], [PATH])
    assert machine.state == DeviationState.CONFIRMED_OFF_ROUTE

    wide = BufferPolygonBuilder(radius_m=100).build("route-1", PATH)
    machine.refresh([wide], [PATH])
    assert machine.state == DeviationState.ON_ROUTE
    assert [c.status for c in recorder.changes] == [RouteStatus.OFF_ROUTE, RouteStatus.ON_ROUTE]


def test_refresh_does_not_extend_off_route_path():
    machine, clock, recorder = make_machine()
    for t in range(0, 6000, 1000):
        machine.process(outside(t), [POLYGON], [PATH])
    assert machine.state == DeviationState.CONFIRMED_OFF_ROUTE
    assert machine.snapshot()["off_route_points"] == 6
    guidance_updates = len(recorder.guidance)

    machine.refresh([POLYGON], [PATH])

    assert machine.state == DeviationState.CONFIRMED_OFF_ROUTE
    assert machine.snapshot()["off_route_points"] == 6
    # Guidance is recomputed against the refreshed paths
    assert len(recorder.guidance) == guidance_updates + 1
    assert len(recorder.changes) == 1


def test_pending_refresh_keeps_path():
    machine, clock, recorder = make_machine()
    machine.process(outside(0), [POLYGON], [PATH])
    machine.process(outside(1000), [POLYGON], [PATH])

    machine.refresh([POLYGON], [PATH])

    assert machine.state == DeviationState.PENDING_OFF_ROUTE
    assert machine.snapshot()["off_route_points"] == 2


def test_pending_started_by_refresh_is_debounced():
    """Geometry arriving after a long silence does not confirm on the next sample."""
    machine, clock, recorder = make_machine()
    machine.process(outside(0), [], [])

    clock.advance_to(600000)
    machine.refresh([POLYGON], [PATH])
    assert machine.state == DeviationState.PENDING_OFF_ROUTE

    assert machine.process(outside(601000), [POLYGON], [PATH]) == DeviationState.PENDING_OFF_ROUTE
    assert recorder.changes == []

    clock.advance_to(604999)
    assert machine.state == DeviationState.PENDING_OFF_ROUTE

    clock.advance_to(605000)
    assert machine.state == DeviationState.CONFIRMED_OFF_ROUTE
    assert [c.status for c in recorder.changes] == [RouteStatus.OFF_ROUTE]
    assert recorder.changes[0].timestamp_ms == 601000


def test_reset_is_silent():
    machine, clock, recorder = make_machine(with_feedback=True)
    machine.process(outside(0), [POLYGON], [PATH])
    clock.advance(5000)

    machine.reset()
    assert machine.state == DeviationState.ON_ROUTE
    assert len(recorder.changes) == 1
    assert clock.pending == 0


def test_pipeline_builder():
    with pytest.raises(ValueError):
        PipelineBuilder().with_geometry_source(lambda sid: ([], [])).build()
    with pytest.raises(ValueError):
        PipelineBuilder().for_session("grandma").build()

    clock = ManualTimerScheduler()
    changes = []
    cues = []
    pipeline = (
        PipelineBuilder()
        .for_session("grandma")
        .with_geometry_source(lambda sid: ([POLYGON], [PATH]))
        .with_scheduler(clock)
        .with_notifier(changes.append)
        .with_cue_sink(cues.append)
        .with_timings(confirmation_delay_ms=2000)
        .build()
    )

    pipeline.process(outside(0))
    clock.advance(2000)
    assert pipeline.state == DeviationState.CONFIRMED_OFF_ROUTE
    assert pipeline.guidance is not None
    assert pipeline.snapshot()["alarm_active"] is True
    assert [c.kind for c in cues] == [CueKind.ALARM]

    assert pipeline.dismiss_alarm() is True
    assert pipeline.snapshot()["alarm_active"] is False

    pipeline.close()
    assert pipeline.state == DeviationState.ON_ROUTE
    assert len(changes) == 1
