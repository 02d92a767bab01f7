#!/usr/bin/env python3
"""
Deviation Replay
================

Runs a recorded walk through the deviation engine offline, on a manual
clock driven by the sample timestamps. No broker needed.

Trace YAML:
    person_id: grandma
    radius_m: 9
    route:
      - {latitude: 0.0, longitude: 0.0, timestamp: 0}
      - {latitude: 0.0, longitude: 0.001, timestamp: 60000}
    samples:
      - {latitude: 0.0, longitude: 0.0005, heading: 90, timestamp: 0}
      - {latitude: 0.0005, longitude: 0.0005, heading: 0, timestamp: 1000}

Architecture:
- geometry: BufferPolygonBuilder (route buffer)
- analytics: ManualTimerScheduler (virtual time)
- pipeline: DeviationPipeline (state machine + guidance + cues)
"""

import argparse
import sys
from pathlib import Path

import yaml

from routewatch_zone import (
    BufferPolygonBuilder,
    ManualTimerScheduler,
    PipelineBuilder,
    PositionSample,
    RoutePath,
)


def load_trace(path: Path) -> dict:
    with open(path) as f:
        trace = yaml.safe_load(f) or {}
    for key in ("route", "samples"):
        if not trace.get(key):
            raise ValueError(f"Trace {path} is missing '{key}'")
    return trace


def replay(trace: dict, confirmation_delay_ms: int = 5000, tail_ms: int = 6000) -> list:
    """
    Replay a trace and return the emitted events as printable lines.

    Samples must be in timestamp order; the clock jumps to each sample's
    timestamp (running due timers) before the sample is processed.
    """
    person_id = str(trace.get("person_id", "person"))
    path = RoutePath.from_records(trace["route"])
    polygon = BufferPolygonBuilder(radius_m=float(trace.get("radius_m", 9.0))).build(
        "replay_route", path
    )

    samples = [
        PositionSample(
            latitude=float(s["latitude"]),
            longitude=float(s["longitude"]),
            heading=float(s.get("heading", 0.0)),
            timestamp_ms=int(s["timestamp"]),
        )
        for s in trace["samples"]
    ]

    events = []
    scheduler = ManualTimerScheduler(start_ms=samples[0].timestamp_ms)

    def on_status(change):
        where = ""
        if change.last_location is not None:
            where = f" at ({change.last_location.latitude:.6f}, {change.last_location.longitude:.6f})"
        events.append(f"{scheduler.now_ms():>8} ms  STATUS   {change.status.value}{where}")

    def on_guidance(session_id, target):
        events.append(f"{scheduler.now_ms():>8} ms  GUIDANCE {target if target else 'calculating'}")

    def on_cue(cue):
        events.append(f"{scheduler.now_ms():>8} ms  CUE      {cue}")

    pipeline = (
        PipelineBuilder()
        .for_session(person_id)
        .with_geometry_source(lambda sid: ([polygon], [path]))
        .with_scheduler(scheduler)
        .with_notifier(on_status)
        .with_guidance_listener(on_guidance)
        .with_cue_sink(on_cue)
        .with_timings(confirmation_delay_ms=confirmation_delay_ms)
        .build()
    )

    for sample in samples:
        scheduler.advance_to(max(sample.timestamp_ms, scheduler.now_ms()))
        pipeline.process(sample)

    scheduler.advance(tail_ms)
    pipeline.close()
    return events


def main():
    parser = argparse.ArgumentParser(description="Replay a recorded walk offline")
    parser.add_argument("trace", type=Path, help="Trace YAML")
    parser.add_argument("--confirmation-delay-ms", type=int, default=5000)
    parser.add_argument("--tail-ms", type=int, default=6000,
                        help="Virtual time to run after the last sample")
    args = parser.parse_args()

    if not args.trace.exists():
        print(f"❌ Error: Trace not found: {args.trace}", file=sys.stderr)
        sys.exit(1)

    trace = load_trace(args.trace)

    print("🚶 Replaying trace...")
    print(f"  Trace: {args.trace}")
    print(f"  Samples: {len(trace['samples'])}")
    print()

    for line in replay(trace, args.confirmation_delay_ms, args.tail_ms):
        print(line)

    print()
    print("✓ Replay completed!")


if __name__ == "__main__":
    main()
