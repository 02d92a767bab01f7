"""
Test Return Guidance
====================

Nearest route point, step count and turn direction.

Usage:
    pytest test_guidance.py -v
"""

import pytest

from routewatch_zone import (
    GuidanceCalculator,
    LatLng,
    PositionSample,
    RoutePath,
    TurnDirection,
)
from routewatch_zone.analytics.guidance import normalize_angle


def equator_path():
    return RoutePath.from_records([
        {"latitude": 0.0, "longitude": 0.0, "timestamp": 0},
        {"latitude": 0.0, "longitude": 0.001, "timestamp": 1000},
    ])


def test_turn_direction_cases():
    """Heading vs bearing, tolerance 15 degrees."""
    print("\n" + "=" * 60)
    print("TEST: Turn Direction")
    print("=" * 60)

    calc = GuidanceCalculator()

    assert calc.turn_direction(0, 170) == TurnDirection.RIGHT
    print("✓ heading 0, bearing 170 -> right")
    assert calc.turn_direction(350, 10) == TurnDirection.RIGHT
    print("✓ heading 350, bearing 10 -> right (wraps through north)")
    assert calc.turn_direction(10, 5) == TurnDirection.STRAIGHT
    print("✓ heading 10, bearing 5 -> straight")

    assert calc.turn_direction(0, 190) == TurnDirection.LEFT
    assert calc.turn_direction(10, 350) == TurnDirection.LEFT
    assert calc.turn_direction(90, 105) == TurnDirection.STRAIGHT
    assert calc.turn_direction(90, 106) == TurnDirection.RIGHT
    # Exactly behind counts as right
    assert calc.turn_direction(0, 180) == TurnDirection.RIGHT


def test_normalize_angle_range():
    assert normalize_angle(0) == 0
    assert normalize_angle(-180) == 180
    assert normalize_angle(180) == 180
    assert normalize_angle(540) == 180
    assert normalize_angle(-190) == pytest.approx(170)
    assert normalize_angle(350) == pytest.approx(-10)


def test_steps_round_half_up():
    calc = GuidanceCalculator(stride_length_m=0.5)

    assert calc.steps_for(0.0) == 0
    assert calc.steps_for(0.7) == 1
    assert calc.steps_for(0.75) == 2
    assert calc.steps_for(10.0) == 20

    # Default stride of 0.6 m
    assert GuidanceCalculator().steps_for(6.0) == 10


def test_nearest_point_projects_onto_segment():
    calc = GuidanceCalculator()
    nearest, distance = calc.nearest_point(LatLng(0.0001, 0.0005), [equator_path()])

    assert nearest.latitude == pytest.approx(0.0, abs=1e-9)
    assert nearest.longitude == pytest.approx(0.0005, abs=1e-9)
    assert distance == pytest.approx(11.12, abs=0.01)


def test_nearest_point_clamps_to_endpoint():
    calc = GuidanceCalculator()
    nearest, distance = calc.nearest_point(LatLng(0.0, 0.002), [equator_path()])

    assert nearest.longitude == pytest.approx(0.001, abs=1e-9)
    assert distance == pytest.approx(111.2, abs=0.1)


def test_nearest_point_across_paths():
    calc = GuidanceCalculator()
    north = RoutePath.from_records([
        {"latitude": 0.0003, "longitude": 0.0, "timestamp": 0},
        {"latitude": 0.0003, "longitude": 0.001, "timestamp": 1000},
    ])

    nearest, _ = calc.nearest_point(LatLng(0.0002, 0.0005), [equator_path(), north])
    assert nearest.latitude == pytest.approx(0.0003, abs=1e-9)

    nearest, _ = calc.nearest_point(LatLng(0.0001, 0.0005), [north, equator_path()])
    assert nearest.latitude == pytest.approx(0.0, abs=1e-9)


def test_no_usable_path_gives_no_guidance():
    calc = GuidanceCalculator()
    single = RoutePath.from_records([{"latitude": 0.0, "longitude": 0.0, "timestamp": 0}])
    sample = PositionSample(latitude=0.0001, longitude=0.0005, heading=0, timestamp_ms=0)

    assert calc.compute(sample, []) is None
    assert calc.compute(sample, [single]) is None


def test_compute_full_target():
    calc = GuidanceCalculator()

    # Facing east, route is due south
    facing_east = PositionSample(latitude=0.0001, longitude=0.0005, heading=90, timestamp_ms=0)
    target = calc.compute(facing_east, [equator_path()])

    assert target.bearing_deg == pytest.approx(180.0, abs=1e-3)
    assert target.turn_direction == TurnDirection.RIGHT
    assert target.steps_to_target == 19
    assert target.steps_to_target == calc.steps_for(target.distance_m)
    assert target.guidance_line == (facing_east.location, target.nearest_point)

    facing_west = PositionSample(latitude=0.0001, longitude=0.0005, heading=270, timestamp_ms=0)
    assert calc.compute(facing_west, [equator_path()]).turn_direction == TurnDirection.LEFT

    facing_south = PositionSample(latitude=0.0001, longitude=0.0005, heading=185, timestamp_ms=0)
    assert calc.compute(facing_south, [equator_path()]).turn_direction == TurnDirection.STRAIGHT


def test_guidance_bounds():
    calc = GuidanceCalculator()
    for lat, lon, heading in [(0.0, 0.0005, 0), (0.0003, -0.0002, 45), (-0.001, 0.003, 300)]:
        target = calc.compute(
            PositionSample(latitude=lat, longitude=lon, heading=heading, timestamp_ms=0),
            [equator_path()],
        )
        assert isinstance(target.steps_to_target, int)
        assert target.steps_to_target >= 0
        assert 0.0 <= target.bearing_deg < 360.0


def test_calculator_validation():
    with pytest.raises(ValueError):
        GuidanceCalculator(stride_length_m=0)
    with pytest.raises(ValueError):
        GuidanceCalculator(turn_tolerance_deg=200)
