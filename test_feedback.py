"""
Test Feedback Cues
==================

Alarm / directional cue streams on a manual clock.

Usage:
    pytest test_feedback.py -v
"""

import threading

from routewatch_zone import (
    CueKind,
    FeedbackScheduler,
    GuidanceTarget,
    LatLng,
    ManualTimerScheduler,
    TurnDirection,
)


def target(turn=TurnDirection.LEFT, steps=19):
    return GuidanceTarget(
        origin=LatLng(0.0001, 0.0005),
        nearest_point=LatLng(0.0, 0.0005),
        distance_m=11.1,
        steps_to_target=steps,
        turn_direction=turn,
        bearing_deg=180.0,
    )


def make_feedback(guidance=None):
    clock = ManualTimerScheduler()
    cues = []
    state = {"guidance": guidance if guidance is not None else target()}
    feedback = FeedbackScheduler(
        session_id="grandma",
        scheduler=clock,
        cue_sink=cues.append,
        guidance_supplier=lambda: state["guidance"],
    )
    return feedback, clock, cues, state


def test_alarm_fires_immediately_and_repeats():
    """Alarm preempts directional cues until dismissed."""
    print("\n" + "=" * 60)
    print("TEST: Alarm Stream")
    print("=" * 60)

    feedback, clock, cues, _ = make_feedback()
    feedback.engage()

    assert [c.kind for c in cues] == [CueKind.ALARM]
    print("✓ Alarm on engage")

    clock.advance(2000)
    clock.advance(2000)
    assert [c.kind for c in cues] == [CueKind.ALARM] * 3
    assert [c.sequence for c in cues] == [1, 2, 3]
    print("✓ Alarm every 2000ms, no directional cues while it rings")


def test_dismiss_lets_directional_cues_through():
    feedback, clock, cues, state = make_feedback()
    feedback.engage()

    assert feedback.dismiss_alarm() is True
    assert feedback.dismiss_alarm() is False
    assert feedback.alarm_active is False

    clock.advance(2000)
    directional = [c for c in cues if c.kind == CueKind.DIRECTIONAL]
    assert len(directional) == 1
    assert directional[0].turn_direction == TurnDirection.LEFT
    assert directional[0].steps_to_target == 19

    # Cues follow the latest guidance
    state["guidance"] = target(TurnDirection.RIGHT, 7)
    clock.advance(2000)
    assert cues[-1].turn_direction == TurnDirection.RIGHT
    assert cues[-1].steps_to_target == 7
    assert [c.kind for c in cues].count(CueKind.ALARM) == 1


def test_no_directional_cue_when_straight_or_unknown():
    feedback, clock, cues, state = make_feedback(target(TurnDirection.STRAIGHT))
    feedback.engage()
    feedback.dismiss_alarm()

    clock.advance(6000)
    assert [c.kind for c in cues] == [CueKind.ALARM]

    state["guidance"] = None
    clock.advance(6000)
    assert [c.kind for c in cues] == [CueKind.ALARM]


def test_stop_cancels_everything():
    feedback, clock, cues, _ = make_feedback()
    feedback.engage()
    feedback.stop()
    feedback.stop()

    clock.advance(10000)
    assert len(cues) == 1
    assert feedback.engaged is False
    assert feedback.alarm_active is False
    assert clock.pending == 0


def test_engage_is_idempotent_and_restartable():
    feedback, clock, cues, _ = make_feedback()
    feedback.engage()
    feedback.engage()
    assert len(cues) == 1

    feedback.stop()
    feedback.engage()
    assert len(cues) == 2
    clock.advance(2000)
    assert [c.kind for c in cues] == [CueKind.ALARM] * 3


def test_sink_errors_are_contained():
    clock = ManualTimerScheduler()

    def broken_sink(cue):
        raise RuntimeError("speaker unplugged")

    feedback = FeedbackScheduler(
        session_id="grandma",
        scheduler=clock,
        cue_sink=broken_sink,
        guidance_supplier=lambda: None,
    )
    feedback.engage()
    clock.advance(4000)
    assert feedback.engaged is True


def test_manual_clock_runs_timers_in_order():
    clock = ManualTimerScheduler(start_ms=1000)
    fired = []

    clock.call_later(300, lambda: fired.append(("b", clock.now_ms())))
    clock.call_later(100, lambda: fired.append(("a", clock.now_ms())))
    handle = clock.call_later(200, lambda: fired.append(("x", clock.now_ms())))
    handle.cancel()
    handle.cancel()

    clock.advance(250)
    assert fired == [("a", 1100)]
    assert clock.now_ms() == 1250

    clock.advance_to(1300)
    assert fired == [("a", 1100), ("b", 1300)]


def test_manual_clock_accepts_timers_from_other_threads():
    clock = ManualTimerScheduler()
    fired = []
    lock = threading.Lock()

    def record():
        with lock:
            fired.append(1)

    def arm():
        for _ in range(200):
            clock.call_later(10, record)

    workers = [threading.Thread(target=arm) for _ in range(4)]
    for worker in workers:
        worker.start()
    for step in range(50):
        clock.advance(1)
    for worker in workers:
        worker.join()

    clock.advance(100)
    assert len(fired) == 800
    assert clock.pending == 0
